"""Anubis proof-of-work challenge detection and solving.

Anubis answers the first request from an unknown client with a small HTML
page that embeds a JSON challenge::

    <script id="anubis_challenge" type="application/json">
      {"challenge": "...", "rules": {"algorithm": "fast", "difficulty": 4}}
    </script>

The browser is expected to find a nonce such that
``sha256(seed + str(nonce))`` starts with ``difficulty`` hex zeros, then
call the pass-challenge endpoint, which answers with a redirect and an
auth cookie. The JSON layout has changed between Anubis releases, so each
layout is a versioned ChallengeScheme; the solver picks the first scheme
whose ``matches()`` accepts the payload.
"""

import asyncio
import hashlib
import json
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from http.cookies import CookieError, SimpleCookie
from urllib.parse import urlencode, urlparse

from gist.config import settings
from gist.services.challenge_cache import HostChallengeCache
from gist.services.errors import ChallengeParseError, ChallengeSolveError, GivingUpError
from gist.services.fetcher import FingerprintedFetcher, validate_url

logger = logging.getLogger(__name__)

PASS_CHALLENGE_PATH = "/.within.website/x/cmd/anubis/api/pass-challenge"
AUTH_COOKIE_SUFFIX = "anubis-auth"

# How often (in nonces) the search loop checks for cancellation
CANCEL_CHECK_INTERVAL = 1024

_SIGNATURE = re.compile(rb"""id=["']anubis_challenge["']""")
_CHALLENGE_SCRIPT = re.compile(
    r"""<script[^>]*id=["']anubis_challenge["'][^>]*>(.*?)</script>""",
    re.DOTALL | re.IGNORECASE,
)
_BASE_PREFIX_SCRIPT = re.compile(
    r"""<script[^>]*id=["']anubis_base_prefix["'][^>]*>(.*?)</script>""",
    re.DOTALL | re.IGNORECASE,
)

# Nonce searches are CPU-bound; keep them off the event loop
_pow_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="pow")


@dataclass(frozen=True)
class Challenge:
    scheme: str
    seed: str
    difficulty: int
    algorithm: str = "fast"
    challenge_id: str = ""
    base_prefix: str = ""


class ChallengeScheme:
    """One version of the challenge page layout and proof-of-work rules."""

    version = ""
    algorithms = ("fast", "slow")

    def matches(self, payload: dict) -> bool:
        raise NotImplementedError

    def parse(self, payload: dict, base_prefix: str = "") -> Challenge:
        raise NotImplementedError

    def digest(self, seed: str, nonce: int) -> str:
        return hashlib.sha256(f"{seed}{nonce}".encode()).hexdigest()

    def meets_difficulty(self, digest: str, difficulty: int) -> bool:
        return digest.startswith("0" * difficulty)

    def verification_params(
        self, challenge: Challenge, digest: str, nonce: int, redir: str, elapsed_ms: int
    ) -> dict[str, str]:
        return {
            "response": digest,
            "nonce": str(nonce),
            "redir": redir,
            "elapsedTime": str(elapsed_ms),
        }

    def _rules(self, payload: dict) -> tuple[str, int]:
        rules = payload.get("rules")
        if not isinstance(rules, dict):
            raise ChallengeParseError("Challenge has no rules object")
        algorithm = str(rules.get("algorithm") or "fast")
        if algorithm not in self.algorithms:
            raise ChallengeParseError(f"Unsupported challenge algorithm {algorithm!r}")
        difficulty = rules.get("difficulty")
        if isinstance(difficulty, bool) or not isinstance(difficulty, int) or difficulty < 0:
            raise ChallengeParseError(f"Invalid challenge difficulty {difficulty!r}")
        return algorithm, difficulty


class AnubisLegacyScheme(ChallengeScheme):
    """Anubis before 1.20: the challenge is the bare seed string."""

    version = "anubis/v1"

    def matches(self, payload: dict) -> bool:
        return isinstance(payload.get("challenge"), str)

    def parse(self, payload: dict, base_prefix: str = "") -> Challenge:
        seed = payload["challenge"]
        if not seed:
            raise ChallengeParseError("Empty challenge seed")
        algorithm, difficulty = self._rules(payload)
        return Challenge(
            scheme=self.version,
            seed=seed,
            difficulty=difficulty,
            algorithm=algorithm,
            base_prefix=base_prefix,
        )


class AnubisScheme(ChallengeScheme):
    """Anubis 1.20+: the challenge is an object carrying an id and randomData."""

    version = "anubis/v2"

    def matches(self, payload: dict) -> bool:
        challenge = payload.get("challenge")
        return isinstance(challenge, dict) and "randomData" in challenge

    def parse(self, payload: dict, base_prefix: str = "") -> Challenge:
        challenge = payload["challenge"]
        seed = challenge.get("randomData")
        if not isinstance(seed, str) or not seed:
            raise ChallengeParseError("Challenge has no randomData seed")
        algorithm, difficulty = self._rules(payload)
        return Challenge(
            scheme=self.version,
            seed=seed,
            difficulty=difficulty,
            algorithm=algorithm,
            challenge_id=str(challenge.get("id") or ""),
            base_prefix=base_prefix,
        )

    def verification_params(
        self, challenge: Challenge, digest: str, nonce: int, redir: str, elapsed_ms: int
    ) -> dict[str, str]:
        params = super().verification_params(challenge, digest, nonce, redir, elapsed_ms)
        if challenge.challenge_id:
            params["id"] = challenge.challenge_id
        return params


DEFAULT_SCHEMES: tuple[ChallengeScheme, ...] = (AnubisScheme(), AnubisLegacyScheme())


def is_challenge(body: bytes | str) -> bool:
    """Cheap signature match for an Anubis challenge page. No parsing, no I/O."""
    if isinstance(body, str):
        body = body.encode("utf-8", errors="ignore")
    return bool(_SIGNATURE.search(body))


def parse_challenge(
    body: bytes | str, schemes: tuple[ChallengeScheme, ...] = DEFAULT_SCHEMES
) -> tuple[Challenge, ChallengeScheme]:
    """Extract the challenge from a challenge page, or raise ChallengeParseError."""
    html = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body

    match = _CHALLENGE_SCRIPT.search(html)
    if not match:
        raise ChallengeParseError("No anubis_challenge script in page")
    try:
        payload = json.loads(match.group(1))
    except ValueError as e:
        raise ChallengeParseError(f"Challenge JSON is malformed: {e}") from e
    if not isinstance(payload, dict):
        raise ChallengeParseError("Challenge JSON is not an object")

    base_prefix = ""
    prefix_match = _BASE_PREFIX_SCRIPT.search(html)
    if prefix_match:
        try:
            value = json.loads(prefix_match.group(1))
            if isinstance(value, str):
                base_prefix = value.rstrip("/")
        except ValueError:
            logger.debug("Ignoring malformed anubis_base_prefix")

    for scheme in schemes:
        if scheme.matches(payload):
            return scheme.parse(payload, base_prefix), scheme
    raise ChallengeParseError("Challenge layout not recognised by any scheme")


def solve_nonce(
    challenge: Challenge,
    scheme: ChallengeScheme,
    stop_event: threading.Event | None = None,
    max_iterations: int | None = None,
) -> tuple[int, str] | None:
    """Brute-force the smallest nonce meeting the difficulty.

    Returns (nonce, digest), or None if stop_event was set mid-search.
    Raises GivingUpError after max_iterations nonces.
    """
    limit = settings.CHALLENGE_MAX_ITERATIONS if max_iterations is None else max_iterations
    for nonce in range(limit):
        if nonce % CANCEL_CHECK_INTERVAL == 0 and stop_event is not None and stop_event.is_set():
            return None
        digest = scheme.digest(challenge.seed, nonce)
        if scheme.meets_difficulty(digest, challenge.difficulty):
            return nonce, digest
    raise GivingUpError(
        f"No nonce found for difficulty {challenge.difficulty} within {limit} attempts"
    )


def _cookie_ttl(set_cookie_header: str, name: str, default: float) -> float:
    """Seconds until the named cookie expires, per Max-Age or Expires."""
    try:
        jar = SimpleCookie()
        jar.load(set_cookie_header)
    except CookieError:
        return default
    morsel = jar.get(name)
    if morsel is None:
        return default
    if morsel["max-age"]:
        try:
            return max(0.0, float(morsel["max-age"]))
        except ValueError:
            return default
    if morsel["expires"]:
        try:
            expires = parsedate_to_datetime(morsel["expires"])
        except (TypeError, ValueError):
            return default
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return max(0.0, (expires - datetime.now(timezone.utc)).total_seconds())
    return default


class ChallengeSolver:
    """Solves Anubis challenges and registers the issued cookie per host."""

    def __init__(
        self,
        http: FingerprintedFetcher,
        cookie_cache: HostChallengeCache,
        schemes: tuple[ChallengeScheme, ...] = DEFAULT_SCHEMES,
        default_ttl: float | None = None,
        max_difficulty: int | None = None,
        max_iterations: int | None = None,
    ):
        self.http = http
        self.cookie_cache = cookie_cache
        self.schemes = schemes
        self.default_ttl = (
            settings.CHALLENGE_COOKIE_TTL_SECONDS if default_ttl is None else default_ttl
        )
        self.max_difficulty = (
            settings.CHALLENGE_MAX_DIFFICULTY if max_difficulty is None else max_difficulty
        )
        self.max_iterations = (
            settings.CHALLENGE_MAX_ITERATIONS if max_iterations is None else max_iterations
        )

    @staticmethod
    def is_challenge(body: bytes | str) -> bool:
        return is_challenge(body)

    def get_cached_cookie(self, host: str) -> str:
        return self.cookie_cache.get_cached_cookie(host)

    async def solve_from_body(
        self, body: bytes | str, url: str, seed_cookies: dict[str, str] | None = None
    ) -> str:
        """Solve the challenge in body and return the issued cookie header value."""
        challenge, scheme = parse_challenge(body, self.schemes)
        if challenge.difficulty > self.max_difficulty:
            raise GivingUpError(
                f"Challenge difficulty {challenge.difficulty} exceeds limit {self.max_difficulty}"
            )

        parsed = urlparse(url)
        host = validate_url(url)
        logger.info(
            f"Solving {challenge.scheme} challenge for {host} (difficulty={challenge.difficulty})"
        )

        started = time.monotonic()
        nonce, digest = await self._search(challenge, scheme)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        params = scheme.verification_params(challenge, digest, nonce, url, elapsed_ms)
        verify_url = (
            f"{parsed.scheme}://{host}{challenge.base_prefix}"
            f"{PASS_CHALLENGE_PATH}?{urlencode(params)}"
        )
        resp = await self.http.get_raw(verify_url, cookies=seed_cookies, allow_redirects=False)

        if resp.status_code >= 400:
            raise ChallengeSolveError(
                f"Challenge verification rejected for {host}: HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        auth = {k: v for k, v in resp.cookies.items() if k.endswith(AUTH_COOKIE_SUFFIX) and v}
        if not auth:
            raise ChallengeSolveError(
                f"Challenge verification for {host} issued no auth cookie",
                status_code=resp.status_code,
            )

        cookie = "; ".join(f"{k}={v}" for k, v in auth.items())
        ttl = self.default_ttl
        for header in resp.set_cookie_headers:
            for name in auth:
                if header.lstrip().startswith(f"{name}="):
                    ttl = _cookie_ttl(header, name, self.default_ttl)

        self.cookie_cache.set_cookie(host, cookie, ttl)
        logger.info(
            f"Challenge solved for {host}: nonce={nonce} in {elapsed_ms}ms, cookie TTL={ttl:.0f}s"
        )
        return cookie

    async def _search(self, challenge: Challenge, scheme: ChallengeScheme) -> tuple[int, str]:
        loop = asyncio.get_running_loop()
        stop = threading.Event()
        future = loop.run_in_executor(
            _pow_executor, solve_nonce, challenge, scheme, stop, self.max_iterations
        )
        try:
            result = await future
        except asyncio.CancelledError:
            stop.set()
            raise
        if result is None:
            raise GivingUpError("Nonce search stopped before finding a solution")
        return result
