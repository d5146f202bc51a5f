"""Typed failures raised by the content acquisition services.

Every pipeline step raises one of these immediately; only the refresh
scheduler swallows them (it logs and moves on). Cancellation is plain
asyncio.CancelledError and is never wrapped.
"""


class GistError(Exception):
    """Base class for all acquisition errors."""


class NotFoundError(GistError):
    """The requested entry does not exist."""

    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"Entry {entry_id} not found")


class InvalidInputError(GistError):
    """Bad URL or scheme, empty extraction, or a malformed challenge."""


class FetchError(GistError):
    """Transient network failure: transport error, timeout or non-200 status."""

    def __init__(self, message: str, url: str = "", status_code: int = 0):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class ChallengeUnsolvableError(GistError):
    """A proof-of-work challenge could not be passed."""


class ChallengeParseError(ChallengeUnsolvableError, InvalidInputError):
    """The challenge page did not contain a usable seed/difficulty."""


class ChallengeSolveError(ChallengeUnsolvableError):
    """The verification endpoint rejected the solution or issued no cookie."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class GivingUpError(ChallengeUnsolvableError):
    """The nonce search hit its ceiling (or the difficulty is out of range)."""


class RefreshError(GistError):
    """One or more feeds failed during a bulk refresh."""

    def __init__(self, failures: dict[int, str]):
        self.failures = failures
        super().__init__(f"{len(failures)} feed(s) failed to refresh")
