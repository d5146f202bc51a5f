"""Shared fakes for the acquisition tests."""

import os

# Keep the module-level engine off the filesystem during tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("REFRESH_ENABLED", "false")

from dataclasses import dataclass

import pytest

from gist.services.anubis import is_challenge
from gist.services.fetcher import FetchResponse, validate_url

ARTICLE_HTML = """
<html>
<head><title>Rust in the Linux kernel</title><style>body{color:red}</style></head>
<body>
<nav><a href="/">Home</a> <a href="/about">About</a></nav>
<article>
<h1>Rust in the Linux kernel</h1>
<script>trackVisitor();</script>
<p>The kernel community has spent the last two years deciding how Rust code should live next
to the existing C subsystems, and the answer turned out to be less dramatic than many expected.
Drivers written in Rust now ship in mainline and are maintained like any other driver.</p>
<p>Maintainers who were sceptical at first point to the reduced number of memory-safety bugs
reported against the new drivers. Others worry about the toolchain requirements and the extra
review burden that a second language places on subsystem maintainers with limited time.</p>
<p>For now the policy is pragmatic: Rust is allowed where a maintainer is willing to take it,
and nobody is required to learn it. See <a href="/docs/rust">the documentation</a> for details
about the bindings, the build configuration and the minimum supported compiler version.</p>
</article>
<footer>Copyright LWN</footer>
</body>
</html>
"""

CHALLENGE_HTML = """
<!doctype html>
<html><head><title>Making sure you&#39;re not a bot!</title></head>
<body>
<h1>Making sure you're not a bot!</h1>
<script id="anubis_base_prefix" type="application/json">""</script>
<script id="anubis_challenge" type="application/json">{"challenge":"5f2e9a0c1d","rules":{"algorithm":"fast","difficulty":1,"report_as":1}}</script>
<script src="/.within.website/x/cmd/anubis/static/js/main.mjs"></script>
</body></html>
"""

CHALLENGE_V2_HTML = """
<html><body>
<script id="anubis_base_prefix" type="application/json">"/gate"</script>
<script id="anubis_challenge" type="application/json">{"challenge":{"id":"01J9ABC","randomData":"c0ffee","issuedAt":"2026-01-01T00:00:00Z"},"rules":{"algorithm":"fast","difficulty":1}}</script>
</body></html>
"""


def make_response(
    body: str | bytes,
    url: str = "https://example.com/post",
    status_code: int = 200,
    cookies: dict | None = None,
    set_cookie_headers: list[str] | None = None,
) -> FetchResponse:
    if isinstance(body, str):
        body = body.encode()
    return FetchResponse(
        url=url,
        status_code=status_code,
        body=body,
        headers={"content-type": "text/html; charset=utf-8"},
        cookies=cookies or {},
        set_cookie_headers=set_cookie_headers or [],
    )


@dataclass
class FakeEntry:
    id: int
    url: str | None
    readable_content: str | None = None


class FakeEntries:
    """In-memory EntryRepository with the same never-overwrite rule."""

    def __init__(self, *entries: FakeEntry):
        self.rows = {e.id: e for e in entries}
        self.updates: list[tuple[int, str]] = []

    async def get_by_id(self, entry_id: int):
        return self.rows.get(entry_id)

    async def update_readable_content(self, entry_id: int, content: str) -> bool:
        self.updates.append((entry_id, content))
        row = self.rows[entry_id]
        if row.readable_content:
            return False
        row.readable_content = content
        return True


class FakeFetcher:
    """Returns queued responses (the last one repeats) and records every call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def fetch(self, url: str, override_cookie: str = "") -> FetchResponse:
        validate_url(url)
        self.calls.append((url, override_cookie))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


class FakeSolver:
    def __init__(self, cookie: str = "techaro.lol-anubis-auth=token", error: Exception | None = None):
        self.cookie = cookie
        self.error = error
        self.solves: list[tuple[str, dict]] = []

    @staticmethod
    def is_challenge(body) -> bool:
        return is_challenge(body)

    async def solve_from_body(self, body, url, seed_cookies=None) -> str:
        self.solves.append((url, dict(seed_cookies or {})))
        if self.error is not None:
            raise self.error
        return self.cookie


@pytest.fixture
def article_html():
    return ARTICLE_HTML


@pytest.fixture
def challenge_html():
    return CHALLENGE_HTML
