from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

ElectionStatus = Literal["in_progress", "completed", "cancelled"]


@dataclass
class BankHolderElection:
    id: int
    challenge_id: int
    initiated_by: int
    status: ElectionStatus = "in_progress"
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "BankHolderElection":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})


@dataclass
class BankHolderVote:
    election_id: int
    voter_id: int
    voted_for_id: int
    id: Optional[int] = None
    voted_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "BankHolderVote":
        m = row._mapping
        return cls(**{name: m[name] for name in cls.__dataclass_fields__})


@dataclass
class ElectionOutcome:
    """Result of the pure winner selection."""

    winner_id: int
    max_votes: int
