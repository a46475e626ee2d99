from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

WindowStatus = Literal["scheduled", "open", "closed"]


@dataclass
class CheckinWindow:
    id: int
    challenge_id: int
    window_number: int
    opens_at: datetime
    closes_at: datetime
    reminder_sent_at: Optional[datetime] = None
    status: WindowStatus = "scheduled"
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "CheckinWindow":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})


@dataclass
class Checkin:
    id: int
    participant_id: int
    window_id: int
    weight: float
    waist: float
    photo_front_id: str
    photo_left_id: str
    photo_right_id: str
    photo_back_id: str
    submitted_at: datetime

    @classmethod
    def from_row(cls, row) -> "Checkin":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})


@dataclass
class CheckinSubmission:
    """Measurements and photo references gathered by the chat flow."""

    weight: float
    waist: float
    photo_front_id: str
    photo_left_id: str
    photo_right_id: str
    photo_back_id: str


@dataclass
class CheckinAdvice:
    """Structured advisory text for one check-in."""

    progress_assessment: str
    body_composition_notes: str
    nutrition_advice: str
    training_advice: str
    motivational_message: str
    warning_flags: List[str] = field(default_factory=list)
    llm_model: str = "fallback"
    processing_time_ms: Optional[int] = None
