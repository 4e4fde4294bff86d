from __future__ import annotations

_TRANSIENT_SIGNALS = (
    "err_connection_refused",
    "net::err_",
    "timeout",
    "timed out",
    "connection reset",
    "connection aborted",
    "connection closed",
    "econnreset",
    "enotfound",
    "temporary failure",
    "server disconnected",
)


class SubscoutError(RuntimeError):
    """Base class for every failure category surfaced to callers."""


class NeedsLogin(SubscoutError):
    """Session absent or confirmed stale; only an interactive login recovers it."""

    def __init__(self, service: str, message: str | None = None) -> None:
        self.service = service
        super().__init__(message or f"{service} session requires an interactive login")


class SessionInvalid(SubscoutError):
    """A fetch came back as a logged-out or guest session."""

    def __init__(self, service: str, message: str | None = None) -> None:
        self.service = service
        super().__init__(message or f"{service} session is no longer valid")


class NavigationFailed(SubscoutError):
    """A page load or request failed outright. Does not invalidate the session."""


class TransientNetworkError(NavigationFailed):
    """Raised when a navigation fails due to transient network issues."""


class BatchLookupFailed(SubscoutError):
    """A coverage lookup batch could not be completed."""


class ApiKeyMissing(SubscoutError):
    """Raised when a third-party API key has not been configured."""


def is_transient_network_error(message: str) -> bool:
    text = (message or "").lower()
    return any(sig in text for sig in _TRANSIENT_SIGNALS)
