"""
core/clock.py -- Injectable wall-clock source.

Token expiry checks (reset tokens, session tokens) compare against a Clock
instead of calling datetime.now() inline, so tests can move time forward
without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
