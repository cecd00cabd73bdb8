"""
Rate limit classification and warnings.

Everything here is a local heuristic, not an authoritative quota check:
- Classification: an error is rate limited if its text contains a marker
- Frequency: too many calls inside a short trailing window
- Warning: rate limited calls today outrank the frequency signal
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from ..config.loader import DEFAULT_RATE_LIMIT_MARKERS
from ..storage.models import UsageLogEntry, UsageStatus


def classify_error(
    error_message: str,
    markers: Iterable[str] = DEFAULT_RATE_LIMIT_MARKERS
) -> UsageStatus:
    """Classify a failed call by case-sensitive substring match.

    Args:
        error_message: Error text from the recognition service
        markers: Substrings that indicate throttling

    Returns:
        UsageStatus.RATE_LIMITED or UsageStatus.ERROR
    """
    if any(marker in error_message for marker in markers):
        return UsageStatus.RATE_LIMITED
    return UsageStatus.ERROR


def count_recent(
    entries: Iterable[UsageLogEntry],
    now: datetime,
    window_seconds: int
) -> int:
    """Count entries with ``now - window <= timestamp <= now``."""
    start = now - timedelta(seconds=window_seconds)
    return sum(1 for e in entries if start <= e.timestamp <= now)


def is_approaching_rate_limit(
    entries: Iterable[UsageLogEntry],
    now: datetime,
    window_seconds: int = 60,
    threshold: int = 10
) -> bool:
    """True if at least ``threshold`` calls happened in the trailing window."""
    return count_recent(entries, now, window_seconds) >= threshold


def rate_limit_warning(
    today_entries: Sequence[UsageLogEntry],
    approaching: bool
) -> Optional[str]:
    """Build the single advisory message shown to the user.

    Args:
        today_entries: Entries recorded today
        approaching: Result of the frequency heuristic

    Returns:
        Warning text, or None when there is nothing to report
    """
    rate_limited_today = sum(
        1 for e in today_entries if e.status == UsageStatus.RATE_LIMITED
    )
    if rate_limited_today > 0:
        return (
            f"⚠️ You've hit rate limits {rate_limited_today} time(s) today. "
            "Consider reducing batch size or waiting between requests."
        )
    if approaching:
        return (
            "⚠️ High request frequency detected. You may hit rate limits soon. "
            "Consider adding delays between batches."
        )
    return None
