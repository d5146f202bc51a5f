import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gist.models.entry import Entry
from gist.models.feed import Feed

logger = logging.getLogger(__name__)


@dataclass
class NewEntry:
    guid: str
    url: str | None
    title: str
    author: str | None
    content: str | None
    published_at: datetime | None


class SQLFeedRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_all(self) -> list[Feed]:
        async with self._session_factory() as session:
            rows = await session.execute(select(Feed).order_by(Feed.id))
            return list(rows.scalars())

    async def insert_entries(self, feed_id: int, items: list[NewEntry]) -> list[int]:
        """Insert items whose guid is new for this feed. Returns the new entry IDs."""
        if not items:
            return []
        guids = [item.guid for item in items]
        async with self._session_factory() as session:
            existing = await session.execute(
                select(Entry.guid).where(Entry.feed_id == feed_id).where(Entry.guid.in_(guids))
            )
            seen = set(existing.scalars())
            created: list[Entry] = []
            for item in items:
                if item.guid in seen:
                    continue
                seen.add(item.guid)
                entry = Entry(
                    feed_id=feed_id,
                    guid=item.guid,
                    url=item.url,
                    title=item.title,
                    author=item.author,
                    content=item.content,
                    published_at=item.published_at,
                )
                session.add(entry)
                created.append(entry)
            await session.commit()
            return [entry.id for entry in created]

    async def mark_refreshed(self, feed_id: int, title: str | None, error: str | None) -> None:
        values: dict = {"error_message": error, "updated_at": datetime.now(timezone.utc)}
        if title:
            values["title"] = title
        async with self._session_factory() as session:
            await session.execute(update(Feed).where(Feed.id == feed_id).values(**values))
            await session.commit()
