"""Bulk feed synchronization, invoked once per scheduler cycle."""

import asyncio
import calendar
import logging
from datetime import datetime, timezone
from typing import Protocol

import feedparser

from gist.config import settings
from gist.repositories.entries import SQLEntryRepository
from gist.repositories.feeds import NewEntry, SQLFeedRepository
from gist.services.errors import GistError, RefreshError
from gist.services.fetcher import FingerprintedFetcher
from gist.services.readability_service import ReadabilityService

logger = logging.getLogger(__name__)

# Cap on entries per feed whose full text is fetched in one cycle
MAX_FULL_TEXT_PER_FEED = 20


class RefreshService(Protocol):
    async def refresh_all(self) -> None: ...


def _entry_datetime(item) -> datetime | None:
    parsed = item.get("published_parsed") or item.get("updated_parsed")
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)


def _entry_content(item) -> str | None:
    for block in item.get("content") or []:
        if block.get("value"):
            return block["value"]
    return item.get("summary")


def parse_feed(body: bytes, feed_url: str) -> tuple[str, list[NewEntry]]:
    """Parse RSS/Atom bytes into (feed title, entries)."""
    parsed = feedparser.parse(body, response_headers={"content-location": feed_url})
    if parsed.bozo and not parsed.entries:
        raise GistError(f"Unparseable feed {feed_url}: {parsed.get('bozo_exception')}")

    items: list[NewEntry] = []
    for item in parsed.entries:
        link = item.get("link") or None
        guid = item.get("id") or link
        if not guid:
            continue
        items.append(
            NewEntry(
                guid=guid,
                url=link,
                title=(item.get("title") or "").strip(),
                author=item.get("author") or None,
                content=_entry_content(item),
                published_at=_entry_datetime(item),
            )
        )
    return (parsed.feed.get("title") or "").strip(), items


class FeedRefreshService:
    def __init__(
        self,
        feeds: SQLFeedRepository,
        entries: SQLEntryRepository,
        fetcher: FingerprintedFetcher,
        readability: ReadabilityService | None = None,
        concurrency: int | None = None,
    ):
        self.feeds = feeds
        self.entries = entries
        self.fetcher = fetcher
        self.readability = readability
        self.concurrency = concurrency or settings.REFRESH_CONCURRENCY

    async def refresh_all(self) -> None:
        """Refresh every feed. Raises RefreshError listing the feeds that failed."""
        feeds = await self.feeds.list_all()
        semaphore = asyncio.Semaphore(self.concurrency)
        failures: dict[int, str] = {}

        async def _guarded(feed) -> None:
            async with semaphore:
                try:
                    await self.refresh_feed(feed)
                except GistError as e:
                    failures[feed.id] = str(e)
                    await self.feeds.mark_refreshed(feed.id, None, str(e))
                    logger.warning(f"Feed {feed.id} ({feed.url}) refresh failed: {e}")

        await asyncio.gather(*(_guarded(feed) for feed in feeds))
        logger.info(f"Refreshed {len(feeds) - len(failures)}/{len(feeds)} feeds")
        if failures:
            raise RefreshError(failures)

    async def refresh_feed(self, feed) -> list[int]:
        response = await self.fetcher.fetch(feed.url)
        title, items = parse_feed(response.body, feed.url)
        new_ids = await self.feeds.insert_entries(feed.id, items)
        await self.feeds.mark_refreshed(feed.id, title, None)
        if new_ids:
            logger.info(f"Feed {feed.id}: {len(new_ids)} new entries")

        if feed.fetch_full_text and self.readability is not None:
            pending = await self.entries.list_missing_readable(feed.id, MAX_FULL_TEXT_PER_FEED)
            results = await self.readability.fetch_many(pending, self.concurrency)
            failed = [i for i, r in results.items() if isinstance(r, Exception)]
            if failed:
                logger.warning(
                    f"Feed {feed.id}: full text failed for {len(failed)}/{len(results)} entries"
                )
        return new_ids
