"""Full-text acquisition for stored entries.

Flow for one entry:

    cache check -> fetch -> (challenge? solve once, re-fetch) -> sanitize
    -> extract -> render -> persist

The entry's readable content is written at most once: a non-empty value is
returned as-is without touching the network, and the repository refuses to
overwrite one. Sanitize/extract are CPU-bound and run in a thread pool.
"""

import asyncio
import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from gist.config import settings
from gist.core.log_context import task_context
from gist.repositories.entries import EntryRepository
from gist.services.anubis import ChallengeSolver
from gist.services.errors import ChallengeUnsolvableError, InvalidInputError, NotFoundError
from gist.services.extractor import Article, ReadabilityExtractor
from gist.services.fetcher import FetchResponse, FingerprintedFetcher
from gist.services.sanitizer import ContentSanitizer

logger = logging.getLogger(__name__)

# Thread pool for CPU-bound sanitize + extraction
_extraction_executor = ThreadPoolExecutor(
    max_workers=settings.EXTRACTION_WORKERS, thread_name_prefix="extract"
)


class ChallengeState(enum.Enum):
    INITIAL = "initial"
    CHALLENGE_DETECTED = "challenge_detected"
    SOLVED = "solved"
    FAILED = "failed"


class ReadabilityService:
    def __init__(
        self,
        entries: EntryRepository,
        fetcher: FingerprintedFetcher,
        solver: ChallengeSolver | None = None,
        sanitizer: ContentSanitizer | None = None,
        extractor: ReadabilityExtractor | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.entries = entries
        self.fetcher = fetcher
        self.solver = solver
        self.sanitizer = sanitizer or ContentSanitizer()
        self.extractor = extractor or ReadabilityExtractor()
        self._executor = executor or _extraction_executor

    async def fetch_readable_content(self, entry_id: int) -> str:
        """Return the entry's readable HTML, fetching and storing it on first use."""
        with task_context(f"entry:{entry_id}"):
            entry = await self.entries.get_by_id(entry_id)
            if entry is None:
                raise NotFoundError(entry_id)

            if entry.readable_content:
                return entry.readable_content

            url = (entry.url or "").strip()
            if not url:
                raise InvalidInputError(f"Entry {entry_id} has no URL")

            article = await self.fetch_article(url)

            written = await self.entries.update_readable_content(entry_id, article.content_html)
            if not written:
                # A concurrent fetch stored first; its content is the one every later read sees
                stored = await self.entries.get_by_id(entry_id)
                if stored is not None and stored.readable_content:
                    logger.debug(f"Entry {entry_id} was stored concurrently, returning stored copy")
                    return stored.readable_content
                raise NotFoundError(entry_id)

            logger.info(
                f"Stored readable content for entry {entry_id} "
                f"({article.text_length} chars via {article.method})"
            )
            return article.content_html

    async def fetch_article(self, url: str) -> Article:
        """Fetch, sanitize and extract url without persisting anything."""
        response = await self._fetch_with_challenge(url)

        loop = asyncio.get_running_loop()
        article = await loop.run_in_executor(
            self._executor, self._process, response, response.url or url
        )
        if article.is_empty:
            raise InvalidInputError(f"No readable content found at {url}")
        return article

    def _process(self, response: FetchResponse, url: str) -> Article:
        sanitized = self.sanitizer.sanitize(response.text)
        return self.extractor.extract(sanitized, url)

    async def _fetch_with_challenge(self, url: str) -> FetchResponse:
        """Fetch url, passing at most one proof-of-work challenge on the way.

        INITIAL --challenge--> CHALLENGE_DETECTED --solve--> SOLVED
        SOLVED --challenge--> FAILED
        A solve is only ever attempted from INITIAL.
        """
        state = ChallengeState.INITIAL
        cookie = ""
        while True:
            response = await self.fetcher.fetch(url, override_cookie=cookie)
            if self.solver is None or not self.solver.is_challenge(response.body):
                return response

            if state is not ChallengeState.INITIAL:
                state = ChallengeState.FAILED
                raise ChallengeUnsolvableError(f"Still challenged after solving for {url}")

            state = ChallengeState.CHALLENGE_DETECTED
            logger.info(f"Detected proof-of-work challenge for {url}")
            # The fresh cookie goes in explicitly; the cache may hold a stale one
            # Solve against the URL that served the challenge, which may differ after redirects
            cookie = await self.solver.solve_from_body(
                response.body, response.url or url, response.cookies
            )
            state = ChallengeState.SOLVED

    async def fetch_many(
        self, entry_ids: Iterable[int], concurrency: int | None = None
    ) -> dict[int, str | Exception]:
        """Fetch several entries with bounded concurrency; failures are returned, not raised."""
        semaphore = asyncio.Semaphore(concurrency or settings.REFRESH_CONCURRENCY)

        async def _one(entry_id: int) -> str:
            async with semaphore:
                return await self.fetch_readable_content(entry_id)

        ids = list(entry_ids)
        results = await asyncio.gather(*(_one(i) for i in ids), return_exceptions=True)
        return dict(zip(ids, results))

    async def aclose(self) -> None:
        await self.fetcher.aclose()
