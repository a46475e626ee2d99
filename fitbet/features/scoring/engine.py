"""
Challenge Scoring Engine

Pure, deterministic end-of-challenge scoring.
No external calls, no randomness, no side effects.

Scoring:
- Goal achievement 0..100 (weight 70% / waist 30% of the goal score)
- Discipline 0..100 = completed / total check-ins (100 with no check-ins)
- Total = 70% goal achievement + 30% discipline
- Winner: discipline >= threshold and goal achievement >= 80
- Non-winners' stakes are split evenly between winners
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from fitbet.models.checkin import Checkin
from fitbet.models.participant import Goal, Participant


@dataclass
class ParticipantScore:
    participant: Participant
    goal: Optional[Goal]
    goal_achievement: float
    discipline_score: float
    total_score: float
    is_winner: bool = False
    prize_share: float = 0.0  # multiple of the stake received on top of the refund

    def to_dict(self) -> dict:
        return {
            "participant_id": self.participant.id,
            "user_id": self.participant.user_id,
            "goal_achievement": round(self.goal_achievement, 2),
            "discipline_score": round(self.discipline_score, 2),
            "total_score": round(self.total_score, 2),
            "is_winner": self.is_winner,
            "prize_share": self.prize_share,
        }


class ScoringEngine:
    """Pure deterministic challenge scoring."""

    GOAL_WEIGHT = 0.7
    DISCIPLINE_WEIGHT = 0.3
    WEIGHT_PART = 0.7
    WAIST_PART = 0.3
    WINNER_MIN_GOAL = 80.0
    # Waist is not scored on the bulk track
    BULK_WAIST_PROGRESS = 100.0

    @staticmethod
    def _progress(start: Optional[float], target: Optional[float], latest: float, losing: bool) -> float:
        """Fraction of the planned change achieved, as 0..100."""
        if start is None or target is None:
            return 0.0
        planned = start - target if losing else target - start
        if planned <= 0:
            return 0.0
        achieved = start - latest if losing else latest - start
        return max(0.0, min(100.0, achieved / planned * 100.0))

    @staticmethod
    def goal_achievement(
        participant: Participant, goal: Optional[Goal], latest: Optional[Checkin]
    ) -> float:
        if goal is None or not participant.start_weight or latest is None:
            return 0.0

        if participant.track == "cut":
            weight_progress = ScoringEngine._progress(
                participant.start_weight, goal.target_weight, latest.weight, losing=True
            )
            waist_progress = ScoringEngine._progress(
                participant.start_waist, goal.target_waist, latest.waist, losing=True
            )
        else:
            weight_progress = ScoringEngine._progress(
                participant.start_weight, goal.target_weight, latest.weight, losing=False
            )
            waist_progress = ScoringEngine.BULK_WAIST_PROGRESS

        score = weight_progress * ScoringEngine.WEIGHT_PART + waist_progress * ScoringEngine.WAIST_PART
        return max(0.0, min(100.0, score))

    @staticmethod
    def discipline(participant: Participant) -> float:
        if participant.total_checkins == 0:
            return 100.0
        return participant.completed_checkins / participant.total_checkins * 100.0

    @staticmethod
    def score_challenge(
        participants: List[Participant],
        goals: Dict[int, Optional[Goal]],
        latest_checkins: Dict[int, Optional[Checkin]],
        discipline_threshold: float,
        stake_amount: float,
    ) -> List[ParticipantScore]:
        """
        Score every participant and distribute the prize.

        Args:
            participants: Participants that finished the challenge
            goals: participant id -> goal
            latest_checkins: participant id -> most recent checkin
            discipline_threshold: Fraction (e.g. 0.8) of check-ins required to win
            stake_amount: Stake each participant paid

        Returns:
            Scores sorted by total score, highest first (stable for ties)
        """
        scores = []
        for participant in participants:
            goal = goals.get(participant.id)
            goal_score = ScoringEngine.goal_achievement(
                participant, goal, latest_checkins.get(participant.id)
            )
            discipline = ScoringEngine.discipline(participant)
            scores.append(
                ParticipantScore(
                    participant=participant,
                    goal=goal,
                    goal_achievement=goal_score,
                    discipline_score=discipline,
                    total_score=goal_score * ScoringEngine.GOAL_WEIGHT
                    + discipline * ScoringEngine.DISCIPLINE_WEIGHT,
                )
            )

        required_discipline = discipline_threshold * 100.0
        winners = [
            s for s in scores
            if s.discipline_score >= required_discipline
            and s.goal_achievement >= ScoringEngine.WINNER_MIN_GOAL
        ]
        losers_count = len(scores) - len(winners)

        if winners and losers_count:
            prize_pool = losers_count * stake_amount
            share = (prize_pool / len(winners)) / stake_amount
            for s in winners:
                s.is_winner = True
                s.prize_share = share
        elif winners:
            # Everyone won: stakes are simply returned
            for s in winners:
                s.is_winner = True
                s.prize_share = 0.0

        return sorted(scores, key=lambda s: s.total_score, reverse=True)

    @staticmethod
    def prize_per_winner(scores: List[ParticipantScore], stake_amount: float) -> float:
        winners = [s for s in scores if s.is_winner]
        losers = len(scores) - len(winners)
        if not winners or not losers:
            return 0.0
        return losers * stake_amount / len(winners)
