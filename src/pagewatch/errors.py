"""Exception hierarchy for the page watcher.

Every failure a single job can run into derives from :class:`PageWatchError`
so the job runner can turn it into an ``error`` status with one ``except``
clause.  Only :class:`StoreError` is allowed to abort a whole batch.

Hierarchy::

    PageWatchError
    ├── FetchError
    │   ├── NetworkError
    │   ├── HttpStatusError      (status_code: int)
    │   └── FetchTimeoutError
    ├── NoMatchError
    ├── RenderError
    ├── SandboxExistsError
    └── StoreError
"""

from __future__ import annotations

__all__ = [
    "FetchError",
    "FetchTimeoutError",
    "HttpStatusError",
    "NetworkError",
    "NoMatchError",
    "PageWatchError",
    "RenderError",
    "SandboxExistsError",
    "StoreError",
]


class PageWatchError(Exception):
    """Base class for all page watcher exceptions."""


class FetchError(PageWatchError):
    """Raised when a page could not be retrieved.

    Fetch errors are "hard" failures: retrying the same page through the
    rendering sandbox would not help, so no escalation happens after one.
    """


class NetworkError(FetchError):
    """Connection, DNS or TLS failure while talking to the target site."""


class HttpStatusError(FetchError):
    """The target site answered with a non-success status code.

    Args:
        message: Human-readable description of the failure.
        status_code: The HTTP status returned by the server.
    """

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """A fetch or a render did not complete within its upper bound."""


class NoMatchError(PageWatchError):
    """The locator matched nothing, matched empty content or is invalid."""


class RenderError(PageWatchError):
    """Script execution or navigation failed inside the rendering sandbox."""


class SandboxExistsError(PageWatchError):
    """A racing caller tried to create a second shared rendering sandbox."""


class StoreError(PageWatchError):
    """The persistent state could not be read or written."""
