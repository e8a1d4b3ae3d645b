"""
Shared request dependencies.

The service trusts an upstream gateway to authenticate the caller and pass
their identifier in the X-Requester-Id header.
"""
from typing import Optional

from fastapi import Header

from mahoot.errors import AuthRequiredError, require_identifier


async def get_requester(
    x_requester_id: Optional[str] = Header(default=None, alias="X-Requester-Id"),
) -> str:
    if not x_requester_id or not x_requester_id.strip():
        raise AuthRequiredError("X-Requester-Id header is required")
    return require_identifier(x_requester_id.strip(), "X-Requester-Id")
