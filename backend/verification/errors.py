"""
Error taxonomy for multi-source fetching and verification.

Per-source errors are caught at the fetch task boundary and recorded as an
absent source; only ConfigError aborts a batch.
"""
from __future__ import annotations

from typing import Optional, Sequence


class VerificationError(Exception):
    """Base for all verification errors."""


class ConfigError(VerificationError):
    """Invalid fetch or verification configuration. Raised before any work starts."""


class FetchError(VerificationError):
    """A single source failed to produce data for a single record."""

    retryable: bool = False
    kind: str = "fetch_error"

    def __init__(self, source: str, record_id: str, message: str = "") -> None:
        self.source = source
        self.record_id = record_id
        self.message = message
        super().__init__(f"{source}: {message or self.kind} (record {record_id})")


class NetworkError(FetchError):
    retryable = True
    kind = "network"


class FetchTimeoutError(FetchError):
    retryable = True
    kind = "timeout"


class RateLimitError(FetchError):
    """HTTP 429 or equivalent; retry_after is the source's hint in seconds, if any."""

    retryable = True
    kind = "rate_limited"

    def __init__(
        self,
        source: str,
        record_id: str,
        message: str = "",
        retry_after: Optional[float] = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(source, record_id, message)


class NotFoundError(FetchError):
    kind = "not_found"


class ParseError(FetchError):
    kind = "parse"


class AllSourcesFailed(VerificationError):
    """No source returned usable data for a record. Fatal for that record only."""

    reason = "AllSourcesFailed"

    def __init__(self, record_id: str, errors: Sequence[str] = ()) -> None:
        self.record_id = record_id
        self.errors = list(errors)
        detail = "; ".join(self.errors) if self.errors else "no source returned data"
        super().__init__(f"All sources failed for record {record_id}: {detail}")
