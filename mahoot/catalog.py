"""
PostCatalog — append-only post index populated by the ingestion worker.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.database import insert_ignore
from mahoot.errors import ValidationError, require_identifier
from mahoot.models import Post, utcnow

logger = logging.getLogger(__name__)


class PostCatalog:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(
        self,
        uri: str,
        content_id: str,
        author_id: str,
        indexed_at: Optional[datetime] = None,
    ) -> bool:
        """Index a post. Re-delivered posts are ignored; returns True if new."""
        require_identifier(author_id, "author_id")
        if not uri:
            raise ValidationError("uri is required")
        return await insert_ignore(
            self.session,
            Post,
            {
                "uri": uri,
                "content_id": content_id,
                "author_id": author_id,
                "indexed_at": indexed_at or utcnow(),
            },
            conflict_columns=("uri",),
        )

    async def remove(self, uri: str) -> bool:
        result = await self.session.execute(delete(Post).where(Post.uri == uri))
        return result.rowcount > 0

    async def get(self, uri: str) -> Optional[Post]:
        return await self.session.get(Post, uri)

    async def count(self) -> int:
        return (
            await self.session.execute(select(func.count()).select_from(Post))
        ).scalar_one()
