"""
Check-in window materialisation.

Windows are generated in bulk at activation: window i opens at
started_at + i * period (i = 1, 2, ...) for as long as it opens no later than
ends_at, and closes a fixed window length after it opens.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from fitbet.core.config import Settings, settings as default_settings

WindowSpan = Tuple[int, datetime, datetime]


def checkin_period(config: Optional[Settings] = None) -> timedelta:
    cfg = config or default_settings
    if cfg.CHECKIN_PERIOD_MINUTES:
        return timedelta(minutes=cfg.CHECKIN_PERIOD_MINUTES)
    return timedelta(days=cfg.CHECKIN_PERIOD_DAYS)


def window_length(config: Optional[Settings] = None) -> timedelta:
    cfg = config or default_settings
    return timedelta(hours=cfg.CHECKIN_WINDOW_HOURS)


def generate_windows(
    started_at: datetime,
    ends_at: datetime,
    period: timedelta,
    length: timedelta = timedelta(hours=48),
) -> List[WindowSpan]:
    """Return (window_number, opens_at, closes_at) for every window of the challenge."""
    if period <= timedelta(0):
        raise ValueError("check-in period must be positive")

    spans = []
    number = 1
    opens_at = started_at + period
    while opens_at <= ends_at:
        spans.append((number, opens_at, opens_at + length))
        number += 1
        opens_at = started_at + period * number
    return spans
