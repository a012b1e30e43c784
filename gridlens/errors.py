"""
GridLens — Error taxonomy

  network      : transport-level failure (DNS, refused connection, timeout)
  badStatus    : upstream answered with a non-success status code
  parseError   : payload did not match the declared feed schema
  aggregation  : records had an unexpected shape during metric derivation

Fetch failures are *returned* by the source client inside a FetchResult;
aggregation failures are *raised*.  The fallback orchestrator is the only
place either kind is turned into substitute data.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FetchErrorKind(str, Enum):
    NETWORK     = "network"
    BAD_STATUS  = "badStatus"
    PARSE_ERROR = "parseError"


class GridLensError(Exception):
    """Base class for every error raised inside the GridLens core."""


class FetchError(GridLensError):
    """A single upstream feed could not be fetched or parsed."""

    def __init__(
        self,
        kind: FetchErrorKind,
        detail: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(f"{kind.value}: {detail}")
        self.kind        = kind
        self.detail      = detail
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Transport failures and 5xx responses are worth another attempt."""
        if self.kind is FetchErrorKind.NETWORK:
            return True
        if self.kind is FetchErrorKind.BAD_STATUS:
            return self.status_code is not None and self.status_code >= 500
        return False


class AggregationError(GridLensError):
    """Raw records could not be turned into a snapshot."""
