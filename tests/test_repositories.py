"""Integration tests for the SQLAlchemy repositories on in-memory SQLite."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gist.core.database import create_engine, init_db
from gist.models import Entry, Feed
from gist.repositories.entries import SQLEntryRepository
from gist.repositories.feeds import NewEntry, SQLFeedRepository


@pytest_asyncio.fixture
async def session_factory():
    engine = create_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def feed_id(session_factory):
    async with session_factory() as session:
        feed = Feed(url="https://lwn.net/headlines/rss", fetch_full_text=True)
        session.add(feed)
        await session.commit()
        return feed.id


async def _add_entry(session_factory, feed_id, guid, url="https://lwn.net/a", readable=None) -> int:
    async with session_factory() as session:
        entry = Entry(feed_id=feed_id, guid=guid, url=url, title=guid, readable_content=readable)
        session.add(entry)
        await session.commit()
        return entry.id


class TestSQLEntryRepository:
    @pytest.mark.asyncio
    async def test_get_by_id(self, session_factory, feed_id):
        entry_id = await _add_entry(session_factory, feed_id, "g1")
        repo = SQLEntryRepository(session_factory)

        entry = await repo.get_by_id(entry_id)
        assert entry.url == "https://lwn.net/a"
        assert entry.readable_content is None
        assert await repo.get_by_id(entry_id + 100) is None

    @pytest.mark.asyncio
    async def test_first_write_wins(self, session_factory, feed_id):
        entry_id = await _add_entry(session_factory, feed_id, "g1")
        repo = SQLEntryRepository(session_factory)

        assert await repo.update_readable_content(entry_id, "<p>first</p>") is True
        assert await repo.update_readable_content(entry_id, "<p>second</p>") is False

        entry = await repo.get_by_id(entry_id)
        assert entry.readable_content == "<p>first</p>"
        assert entry.updated_at is not None

    @pytest.mark.asyncio
    async def test_empty_string_counts_as_missing(self, session_factory, feed_id):
        entry_id = await _add_entry(session_factory, feed_id, "g1", readable="")
        repo = SQLEntryRepository(session_factory)
        assert await repo.update_readable_content(entry_id, "<p>x</p>") is True

    @pytest.mark.asyncio
    async def test_list_missing_readable(self, session_factory, feed_id):
        missing = await _add_entry(session_factory, feed_id, "g1")
        await _add_entry(session_factory, feed_id, "g2", readable="<p>done</p>")
        await _add_entry(session_factory, feed_id, "g3", url=None)
        newest = await _add_entry(session_factory, feed_id, "g4")
        repo = SQLEntryRepository(session_factory)

        assert await repo.list_missing_readable(feed_id) == [newest, missing]
        assert await repo.list_missing_readable(feed_id, limit=1) == [newest]


class TestSQLFeedRepository:
    @pytest.mark.asyncio
    async def test_insert_entries_dedupes_by_guid(self, session_factory, feed_id):
        repo = SQLFeedRepository(session_factory)
        items = [
            NewEntry("g1", "https://lwn.net/1", "One", None, None, None),
            NewEntry("g2", "https://lwn.net/2", "Two", "corbet", "<p>s</p>",
                     datetime(2026, 1, 1, tzinfo=timezone.utc)),
            NewEntry("g1", "https://lwn.net/1", "One again", None, None, None),
        ]

        first = await repo.insert_entries(feed_id, items)
        second = await repo.insert_entries(feed_id, items)

        assert len(first) == 2
        assert second == []

    @pytest.mark.asyncio
    async def test_insert_nothing(self, session_factory, feed_id):
        assert await SQLFeedRepository(session_factory).insert_entries(feed_id, []) == []

    @pytest.mark.asyncio
    async def test_list_all_and_mark_refreshed(self, session_factory, feed_id):
        repo = SQLFeedRepository(session_factory)

        await repo.mark_refreshed(feed_id, "LWN.net", None)
        feeds = await repo.list_all()
        assert [f.title for f in feeds] == ["LWN.net"]
        assert feeds[0].error_message is None

        await repo.mark_refreshed(feed_id, None, "HTTP 500")
        feeds = await repo.list_all()
        assert feeds[0].title == "LWN.net"
        assert feeds[0].error_message == "HTTP 500"
