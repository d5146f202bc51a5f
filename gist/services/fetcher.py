"""Outbound HTTP GETs that look like a real desktop Chrome.

Origins that run bot detection look at the TLS ClientHello (JA3/JA4), the
HTTP/2 settings frame and the order of request headers before they look at
the User-Agent. curl_cffi impersonates Chrome's handshake; we pair it with
Chrome's exact navigation header order so both layers agree.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from bs4 import UnicodeDammit
from curl_cffi.requests import AsyncSession
from curl_cffi.requests.exceptions import RequestException, Timeout

from gist.config import settings
from gist.services.challenge_cache import HostChallengeCache
from gist.services.errors import FetchError, InvalidInputError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = ("http", "https")


@dataclass
class FetchResponse:
    url: str
    status_code: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    set_cookie_headers: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Body decoded using the Content-Type charset, then meta tags, then sniffing."""
        hints = []
        match = re.search(r"charset=([\w-]+)", self.headers.get("content-type", ""), re.I)
        if match:
            hints.append(match.group(1))
        dammit = UnicodeDammit(self.body, known_definite_encodings=hints, is_html=True)
        return dammit.unicode_markup or ""


def validate_url(url: str) -> str:
    """Return the lower-cased host[:port] of an http(s) URL, or raise InvalidInputError."""
    try:
        parsed = urlparse((url or "").strip())
    except ValueError as e:
        raise InvalidInputError(f"Malformed URL {url!r}: {e}") from e
    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        raise InvalidInputError(f"Unsupported URL scheme in {url!r}")
    if not parsed.hostname:
        raise InvalidInputError(f"URL has no host: {url!r}")
    try:
        port = parsed.port
    except ValueError as e:
        raise InvalidInputError(f"Invalid port in {url!r}: {e}") from e
    # userinfo never becomes part of the key
    host = f"[{parsed.hostname}]" if ":" in parsed.hostname else parsed.hostname
    return f"{host}:{port}" if port else host


def chrome_headers(profile: str, user_agent: str, accept_language: str) -> list[tuple[str, str]]:
    """Chrome's top-level navigation headers, in the order Chrome sends them."""
    match = re.search(r"(\d+)", profile)
    version = match.group(1) if match else "131"
    return [
        (
            "accept",
            "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7",
        ),
        ("accept-language", accept_language),
        ("cache-control", "max-age=0"),
        ("priority", "u=0, i"),
        (
            "sec-ch-ua",
            f'"Google Chrome";v="{version}", "Chromium";v="{version}", "Not_A Brand";v="24"',
        ),
        ("sec-ch-ua-mobile", "?0"),
        ("sec-ch-ua-platform", '"Windows"'),
        ("sec-fetch-dest", "document"),
        ("sec-fetch-mode", "navigate"),
        ("sec-fetch-site", "none"),
        ("sec-fetch-user", "?1"),
        ("upgrade-insecure-requests", "1"),
        ("user-agent", user_agent),
    ]


class FingerprintedFetcher:
    """One long-lived curl_cffi session shared by every fetch.

    The session is safe for concurrent use from a single event loop and must
    be released exactly once with ``aclose()`` (or ``async with``).
    """

    def __init__(
        self,
        cookie_cache: HostChallengeCache | None = None,
        profile: str | None = None,
        user_agent: str | None = None,
        accept_language: str | None = None,
        timeout: float | None = None,
        session: Any = None,
    ):
        self.cookie_cache = cookie_cache
        self.profile = profile or settings.IMPERSONATE_PROFILE
        self.user_agent = user_agent or settings.CHROME_USER_AGENT
        self.accept_language = accept_language or settings.ACCEPT_LANGUAGE
        self.timeout = settings.FETCH_TIMEOUT_SECONDS if timeout is None else timeout
        self._session = session
        self._closed = False

    def _get_session(self):
        if self._closed:
            raise RuntimeError("FingerprintedFetcher is closed")
        if self._session is None:
            # default_headers=False so our ordered list is the only header set
            self._session = AsyncSession(
                impersonate=self.profile,
                default_headers=False,
                timeout=self.timeout,
            )
        return self._session

    def _headers(self, cookie: str = "") -> dict[str, str]:
        headers = dict(chrome_headers(self.profile, self.user_agent, self.accept_language))
        if cookie:
            headers["cookie"] = cookie
        return headers

    async def fetch(self, url: str, override_cookie: str = "") -> FetchResponse:
        """GET url, returning the 200 response or raising FetchError.

        Cookie precedence: override_cookie > cached challenge cookie for the
        host > none.
        """
        host = validate_url(url)

        cookie = override_cookie
        if not cookie and self.cookie_cache is not None:
            cookie = self.cookie_cache.get_cached_cookie(host)
            if cookie:
                logger.debug(f"Using cached challenge cookie for {host}")

        response = await self._get(url, self._headers(cookie), allow_redirects=True)
        if response.status_code != 200:
            raise FetchError(
                f"HTTP {response.status_code} fetching {url}",
                url=url,
                status_code=response.status_code,
            )
        return response

    async def get_raw(
        self,
        url: str,
        cookies: dict[str, str] | None = None,
        allow_redirects: bool = False,
    ) -> FetchResponse:
        """GET with the same fingerprint but no status check (challenge verification)."""
        validate_url(url)
        cookie = "; ".join(f"{k}={v}" for k, v in (cookies or {}).items())
        return await self._get(url, self._headers(cookie), allow_redirects=allow_redirects)

    async def _get(self, url: str, headers: dict[str, str], allow_redirects: bool) -> FetchResponse:
        session = self._get_session()
        try:
            resp = await session.get(
                url,
                headers=headers,
                allow_redirects=allow_redirects,
                timeout=self.timeout,
            )
            return FetchResponse(
                url=str(resp.url or url),
                status_code=resp.status_code,
                body=resp.content or b"",
                headers={k.lower(): v for k, v in resp.headers.items()},
                cookies=dict(resp.cookies),
                set_cookie_headers=resp.headers.get_list("set-cookie"),
            )
        except Timeout as e:
            raise FetchError(f"Timed out fetching {url}: {e}", url=url) from e
        except RequestException as e:
            raise FetchError(f"Request failed for {url}: {e}", url=url) from e
        finally:
            # Cookies are sent only from the challenge cache, never from the session jar
            session.cookies.clear()

    async def aclose(self) -> None:
        """Release the session. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        session, self._session = self._session, None
        if session is not None:
            await session.close()
            logger.debug("Fetcher session closed")

    async def __aenter__(self) -> "FingerprintedFetcher":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
