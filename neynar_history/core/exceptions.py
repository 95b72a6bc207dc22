"""
Application-level exceptions.

Every error carries a human-readable message and a stable ``code`` used in API
responses and sweep summaries. ``http_status`` is the status the API server
maps the error to.
"""

from __future__ import annotations


class NeynarHistoryError(Exception):
    """Base class for all Neynar History errors."""

    code = "error"
    http_status = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidIdentity(NeynarHistoryError):
    """fid is not a positive integer; rejected before touching observer or store."""

    code = "invalid_identity"
    http_status = 400


class ObserverError(NeynarHistoryError):
    """Base for failures fetching a score from the scoring source."""

    code = "observer_error"
    http_status = 502
    retryable = False


class UpstreamUnavailable(ObserverError):
    """Network, timeout, configuration or HTTP failure of the scoring source."""

    code = "upstream_unavailable"
    http_status = 502
    retryable = True


class RateLimited(ObserverError):
    """Scoring source rejected the call for rate limiting."""

    code = "rate_limited"
    http_status = 429
    retryable = True

    def __init__(self, message: str = "", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class IdentityNotFound(ObserverError):
    """The scoring source has no record of this fid."""

    code = "not_found"
    http_status = 404


class ScoreUnavailable(ObserverError):
    """The fid exists upstream but carries no usable score (absent, non-numeric, non-finite)."""

    code = "score_unavailable"
    http_status = 404


class PersistenceFailure(NeynarHistoryError):
    """Storage backend read or write error. Never surfaced by SnapshotStore."""

    code = "persistence_failure"
    http_status = 503


class RegistryFull(NeynarHistoryError):
    """Tracked set is at capacity and every member is pinned."""

    code = "registry_full"
    http_status = 409


class InvalidWindow(NeynarHistoryError):
    """History window (days) outside the supported set."""

    code = "invalid_window"
    http_status = 400


class Forbidden(NeynarHistoryError):
    """Caller did not present the configured shared secret."""

    code = "forbidden"
    http_status = 403
