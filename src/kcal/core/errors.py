# src/kcal/core/errors.py
from __future__ import annotations

from datetime import datetime
from typing import Optional


class CalendarError(Exception):
    """Base class for calendar resolution failures."""


# ============================================================
# Upstream (recoverable through the local fallback)
# ============================================================
class UpstreamError(CalendarError):
    """The KASI API could not provide an answer."""


class TransientNetworkError(UpstreamError):
    """Timeout or connection failure; retried up to the configured limit."""


class UpstreamRejectionError(UpstreamError):
    """
    The API answered but the answer is unusable: HTTP error status,
    malformed payload, non-"00" result code or an empty item list.
    """

    def __init__(self, message: str, *, result_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.result_code = result_code


class MissingCredentialError(UpstreamRejectionError):
    """No service key configured for the KASI API."""


class CircuitOpenError(UpstreamError):
    def __init__(self, message: str, *, next_attempt_at: Optional[datetime] = None) -> None:
        super().__init__(message)
        self.next_attempt_at = next_attempt_at


# ============================================================
# Local data (never recovered)
# ============================================================
class YearOutOfRangeError(CalendarError, ValueError):
    def __init__(self, year: int, min_year: int, max_year: int) -> None:
        super().__init__(f"year must be between {min_year} and {max_year} (got {year})")
        self.year = year
        self.min_year = min_year
        self.max_year = max_year


class DataNotFoundError(CalendarError, LookupError):
    """Year is in range but the requested record does not exist."""
