"""Wires the long-lived acquisition components together.

One cookie cache and one fetcher session are shared by every readability
call and by the feed refresh; both are owned here and released once by
``aclose()``.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gist.repositories.entries import SQLEntryRepository
from gist.repositories.feeds import SQLFeedRepository
from gist.services.anubis import ChallengeSolver
from gist.services.challenge_cache import HostChallengeCache
from gist.services.fetcher import FingerprintedFetcher
from gist.services.readability_service import ReadabilityService
from gist.services.refresh import FeedRefreshService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cookie_cache: HostChallengeCache
    fetcher: FingerprintedFetcher
    readability: ReadabilityService
    refresh: FeedRefreshService

    async def aclose(self) -> None:
        await self.fetcher.aclose()


def build_services(session_factory: async_sessionmaker[AsyncSession]) -> Services:
    cookie_cache = HostChallengeCache()
    fetcher = FingerprintedFetcher(cookie_cache=cookie_cache)
    solver = ChallengeSolver(http=fetcher, cookie_cache=cookie_cache)
    entries = SQLEntryRepository(session_factory)
    readability = ReadabilityService(entries=entries, fetcher=fetcher, solver=solver)
    refresh = FeedRefreshService(
        feeds=SQLFeedRepository(session_factory),
        entries=entries,
        fetcher=fetcher,
        readability=readability,
    )
    return Services(
        cookie_cache=cookie_cache,
        fetcher=fetcher,
        readability=readability,
        refresh=refresh,
    )
