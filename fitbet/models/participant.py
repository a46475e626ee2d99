from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

Track = Literal["cut", "bulk"]
ParticipantStatus = Literal[
    "onboarding",       # joined, onboarding not finished
    "pending_payment",  # onboarding done, stake not paid
    "payment_marked",   # participant says paid, Bank Holder has not confirmed
    "active",           # payment confirmed
    "dropped",          # onboarding timed out
    "disqualified",     # too many skipped check-ins
    "completed",        # finished the challenge
]
PaymentStatus = Literal["pending", "marked_paid", "confirmed", "refunded"]
GoalVerdict = Literal["realistic", "too_aggressive", "too_easy"]
PhotoSlot = Literal["front", "left", "right", "back"]

PHOTO_SLOTS = ("front", "left", "right", "back")
# Statuses that still owe a confirmed payment before activation
UNPAID_STATUSES = ("onboarding", "pending_payment", "payment_marked")


@dataclass
class Participant:
    """A user's enrollment in one challenge."""

    id: int
    challenge_id: int
    user_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    track: Optional[Track] = None
    start_weight: Optional[float] = None
    start_waist: Optional[float] = None
    height: Optional[float] = None
    start_photo_front_id: Optional[str] = None
    start_photo_left_id: Optional[str] = None
    start_photo_right_id: Optional[str] = None
    start_photo_back_id: Optional[str] = None
    total_checkins: int = 0
    completed_checkins: int = 0
    skipped_checkins: int = 0
    pending_checkin_window_id: Optional[int] = None
    pending_checkin_requested_at: Optional[datetime] = None
    status: ParticipantStatus = "onboarding"
    joined_at: Optional[datetime] = None
    onboarding_completed_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.first_name or self.username or f"User {self.user_id}"

    def start_photo(self, slot: PhotoSlot) -> Optional[str]:
        return getattr(self, f"start_photo_{slot}_id")

    @classmethod
    def from_row(cls, row) -> "Participant":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})


@dataclass
class Goal:
    participant_id: int
    id: Optional[int] = None
    target_weight: Optional[float] = None
    target_waist: Optional[float] = None
    is_validated: bool = False
    validation_result: Optional[GoalVerdict] = None
    validation_feedback: Optional[str] = None
    validated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "Goal":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})


@dataclass
class Payment:
    participant_id: int
    id: Optional[int] = None
    status: PaymentStatus = "pending"
    marked_paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "Payment":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})


@dataclass
class CommitmentTemplate:
    id: int
    name: str
    description: str
    category: str
    is_active: bool = True

    @classmethod
    def from_row(cls, row) -> "CommitmentTemplate":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})
