"""
Onboarding progress, re-derived from stored data on every entry.

A chat flow that gets interrupted asks ``resume_decision`` what to do next
instead of keeping its own flags in process memory.
"""

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence

from fitbet.models.participant import PHOTO_SLOTS, Goal, Participant

OnboardingStep = Literal["track", "metrics", "photos", "goal", "commitments", "done"]
ResumeDecision = Literal["fresh", "resume", "restart"]

MIN_COMMITMENTS = 2
MAX_COMMITMENTS = 3

_METRIC_FIELDS = ("start_weight", "start_waist", "height")


@dataclass
class OnboardingProgress:
    participant_id: int
    has_track: bool
    has_metrics: bool
    missing_photos: List[str] = field(default_factory=list)
    has_goal: bool = False
    commitment_count: int = 0

    @property
    def has_photos(self) -> bool:
        return not self.missing_photos

    @property
    def has_commitments(self) -> bool:
        return MIN_COMMITMENTS <= self.commitment_count <= MAX_COMMITMENTS

    @property
    def has_any_progress(self) -> bool:
        return self.has_track or self.has_metrics or len(self.missing_photos) < len(PHOTO_SLOTS)

    @property
    def next_step(self) -> OnboardingStep:
        if not self.has_track:
            return "track"
        if not self.has_metrics:
            return "metrics"
        if not self.has_photos:
            return "photos"
        if not self.has_goal:
            return "goal"
        if not self.has_commitments:
            return "commitments"
        return "done"

    @property
    def is_complete(self) -> bool:
        return self.next_step == "done"

    def missing(self) -> List[str]:
        items = []
        if not self.has_track:
            items.append("track")
        if not self.has_metrics:
            items.append("metrics")
        items.extend(f"photo_{slot}" for slot in self.missing_photos)
        if not self.has_goal:
            items.append("goal")
        if not self.has_commitments:
            items.append("commitments")
        return items


def derive_progress(
    participant: Participant,
    goal: Optional[Goal] = None,
    commitment_ids: Sequence[int] = (),
) -> OnboardingProgress:
    return OnboardingProgress(
        participant_id=participant.id,
        has_track=participant.track is not None,
        has_metrics=all(getattr(participant, name) for name in _METRIC_FIELDS),
        missing_photos=[slot for slot in PHOTO_SLOTS if not participant.start_photo(slot)],
        has_goal=goal is not None and goal.target_weight is not None and goal.target_waist is not None,
        commitment_count=len(commitment_ids),
    )


def resume_decision(progress: OnboardingProgress, wants_restart: bool = False) -> ResumeDecision:
    """fresh when nothing is stored yet, otherwise restart or resume per the user's choice."""
    if not progress.has_any_progress:
        return "fresh"
    return "restart" if wants_restart else "resume"
