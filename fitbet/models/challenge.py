from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Optional

ChallengeStatus = Literal["draft", "pending_payments", "active", "completed", "cancelled"]
DurationUnit = Literal["months", "days", "minutes"]

TERMINAL_STATUSES = ("completed", "cancelled")
DURATION_UNITS = ("months", "days", "minutes")


def normalize_duration_unit(value: Optional[str]) -> DurationUnit:
    """Map loose spellings ("day", "mins") onto a known unit, defaulting to months."""
    normalized = (value or "").strip().lower()
    if normalized in ("days", "day"):
        return "days"
    if normalized in ("minutes", "minute", "mins", "min"):
        return "minutes"
    return "months"


def add_duration(start: datetime, value: int, unit: DurationUnit) -> datetime:
    """Add a calendar duration. Months clamp to the last day of the target month."""
    if unit == "days":
        return start + timedelta(days=value)
    if unit == "minutes":
        return start + timedelta(minutes=value)

    month_index = start.month - 1 + value
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def duration_to_months(value: int, unit: DurationUnit) -> float:
    if unit == "days":
        return value / 30
    if unit == "minutes":
        return value / (30 * 24 * 60)
    return float(value)


def format_duration(value: int, unit: DurationUnit) -> str:
    label = unit if value != 1 else unit[:-1]
    return f"{value} {label}"


@dataclass
class Challenge:
    """Domain model for a group-chat challenge."""

    id: int
    chat_id: int
    creator_id: int
    stake_amount: float
    duration_value: int = 6
    duration_unit: DurationUnit = "months"
    discipline_threshold: float = 0.8
    max_skips: int = 2
    chat_title: Optional[str] = None
    bank_holder_id: Optional[int] = None
    bank_holder_username: Optional[str] = None
    status: ChallengeStatus = "draft"
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @property
    def accepts_participants(self) -> bool:
        return self.status in ("draft", "pending_payments")

    def compute_ends_at(self, started_at: datetime) -> datetime:
        return add_duration(started_at, self.duration_value, self.duration_unit)

    @classmethod
    def from_row(cls, row) -> "Challenge":
        m = row._mapping
        return cls(
            id=m["id"],
            chat_id=m["chat_id"],
            chat_title=m["chat_title"],
            creator_id=m["creator_id"],
            duration_value=m["duration_value"],
            duration_unit=normalize_duration_unit(m["duration_unit"]),
            stake_amount=m["stake_amount"],
            discipline_threshold=m["discipline_threshold"],
            max_skips=m["max_skips"],
            bank_holder_id=m["bank_holder_id"],
            bank_holder_username=m["bank_holder_username"],
            status=m["status"],
            created_at=m["created_at"],
            started_at=m["started_at"],
            ends_at=m["ends_at"],
        )
