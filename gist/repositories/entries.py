import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gist.models.entry import Entry

logger = logging.getLogger(__name__)


class EntryRepository(Protocol):
    async def get_by_id(self, entry_id: int) -> Entry | None: ...

    async def update_readable_content(self, entry_id: int, content: str) -> bool: ...


class SQLEntryRepository:
    """Entry persistence on top of an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_by_id(self, entry_id: int) -> Entry | None:
        async with self._session_factory() as session:
            return await session.get(Entry, entry_id)

    async def update_readable_content(self, entry_id: int, content: str) -> bool:
        """Store readable content unless the entry already has some.

        Returns True when this call wrote the row. A concurrent fetch that lost
        the race gets False and the first writer's content stays in place.
        """
        stmt = (
            update(Entry)
            .where(Entry.id == entry_id)
            .where(or_(Entry.readable_content.is_(None), Entry.readable_content == ""))
            .values(readable_content=content, updated_at=datetime.now(timezone.utc))
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        written = result.rowcount > 0
        if not written:
            logger.debug(f"Readable content for entry {entry_id} already stored, kept existing")
        return written

    async def list_missing_readable(self, feed_id: int, limit: int = 50) -> list[int]:
        """IDs of a feed's entries that have a URL but no readable content yet."""
        stmt = (
            select(Entry.id)
            .where(Entry.feed_id == feed_id)
            .where(Entry.url.is_not(None))
            .where(or_(Entry.readable_content.is_(None), Entry.readable_content == ""))
            .order_by(Entry.id.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = await session.execute(stmt)
            return list(rows.scalars())
