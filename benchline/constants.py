"""
benchline.constants — Shared Constants & Time Helpers
======================================================

Single source of truth for league-wide constants and the UTC clock.
Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

# ---------------------------------------------------------------------------
# Payment window for promoted players who still owe money
# ---------------------------------------------------------------------------
PAYMENT_DEADLINE = timedelta(hours=2)

# ---------------------------------------------------------------------------
# Concurrency retry policy (linear backoff: 0.1s, 0.2s, 0.3s)
# ---------------------------------------------------------------------------
MAX_RETRIES = 3
RETRY_BACKOFF_SECONDS = 0.1


# ---------------------------------------------------------------------------
# Clock helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Timezone-aware "now" in UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
