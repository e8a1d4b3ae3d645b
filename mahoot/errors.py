"""
Error taxonomy for the Mahoot core.

The HTTP layer (mahoot.main) maps each class to a status code; the core only
raises them. Storage failures are SQLAlchemy's own exceptions and are never
wrapped, only re-exported here under a domain name.
"""
from sqlalchemy.exc import SQLAlchemyError as StorageError  # noqa: F401

MAX_IDENTIFIER_LENGTH = 255


class MahootError(Exception):
    """Base class for errors raised deliberately by the core."""

    status_code = 500


class AuthRequiredError(MahootError):
    """Requester identity is missing."""

    status_code = 401


class ValidationError(MahootError):
    """A configuration value or identifier is out of range or malformed."""

    status_code = 400


class NotFoundError(MahootError):
    """The followee edge an update expects does not exist."""

    status_code = 404


class AllocationBusyError(MahootError):
    """Another request holds this user's feed-generation lease."""

    status_code = 409


def require_identifier(value, name: str) -> str:
    """Return `value` if it is a usable identifier, else raise ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required and must be a non-empty string")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            f"{name} must be at most {MAX_IDENTIFIER_LENGTH} characters"
        )
    return value


def require_int_in_range(value, name: str, low: int, high: int) -> int:
    # bool is an int subclass; True must not pass as 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < low or value > high:
        raise ValidationError(f"{name} must be between {low} and {high}")
    return value
