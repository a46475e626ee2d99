from datetime import datetime, timezone

import pytest

from fitbet.features.scoring.engine import ScoringEngine
from fitbet.models.checkin import Checkin
from fitbet.models.participant import Goal, Participant

NOW = datetime(2025, 2, 1, tzinfo=timezone.utc)


def _participant(pid, track="cut", weight=100.0, waist=100.0, completed=0, total=0):
    return Participant(
        id=pid,
        challenge_id=1,
        user_id=pid,
        track=track,
        start_weight=weight,
        start_waist=waist,
        height=180.0,
        completed_checkins=completed,
        total_checkins=total,
        status="active",
    )


def _checkin(pid, weight, waist):
    return Checkin(
        id=pid,
        participant_id=pid,
        window_id=1,
        weight=weight,
        waist=waist,
        photo_front_id="f",
        photo_left_id="l",
        photo_right_id="r",
        photo_back_id="b",
        submitted_at=NOW,
    )


def test_cut_goal_achievement_example():
    """Half the weight target and none of the waist target scores 35."""
    participant = _participant(1)
    goal = Goal(participant_id=1, target_weight=90.0, target_waist=90.0)
    score = ScoringEngine.goal_achievement(participant, goal, _checkin(1, 95.0, 100.0))
    assert score == pytest.approx(35.0)


def test_bulk_waist_counts_as_fully_achieved():
    participant = _participant(1, track="bulk", weight=70.0, waist=80.0)
    goal = Goal(participant_id=1, target_weight=80.0, target_waist=82.0)
    score = ScoringEngine.goal_achievement(participant, goal, _checkin(1, 75.0, 80.0))
    assert score == pytest.approx(0.7 * 50 + 0.3 * 100)


def test_moving_the_wrong_way_floors_at_zero():
    participant = _participant(1)
    goal = Goal(participant_id=1, target_weight=90.0, target_waist=90.0)
    assert ScoringEngine.goal_achievement(participant, goal, _checkin(1, 108.0, 104.0)) == 0.0


def test_overshooting_the_goal_caps_at_hundred():
    participant = _participant(1)
    goal = Goal(participant_id=1, target_weight=90.0, target_waist=90.0)
    assert ScoringEngine.goal_achievement(participant, goal, _checkin(1, 80.0, 85.0)) == pytest.approx(100.0)


def test_no_goal_or_no_checkin_scores_zero():
    participant = _participant(1)
    goal = Goal(participant_id=1, target_weight=90.0, target_waist=90.0)
    assert ScoringEngine.goal_achievement(participant, None, _checkin(1, 90.0, 90.0)) == 0.0
    assert ScoringEngine.goal_achievement(participant, goal, None) == 0.0


def test_discipline_is_vacuous_without_checkins():
    assert ScoringEngine.discipline(_participant(1)) == 100.0
    assert ScoringEngine.discipline(_participant(1, completed=3, total=4)) == pytest.approx(75.0)


def test_prize_split_between_two_winners():
    """Three players, two winners, stake 1000: each winner gets half a stake extra."""
    participants = [_participant(i, completed=4, total=4) for i in (1, 2, 3)]
    goals = {i: Goal(participant_id=i, target_weight=90.0, target_waist=90.0) for i in (1, 2, 3)}
    latest = {1: _checkin(1, 90.0, 90.0), 2: _checkin(2, 89.0, 90.0), 3: _checkin(3, 100.0, 100.0)}

    scores = ScoringEngine.score_challenge(participants, goals, latest, 0.8, 1000.0)
    by_id = {s.participant.id: s for s in scores}

    assert by_id[1].is_winner and by_id[2].is_winner
    assert not by_id[3].is_winner
    assert by_id[1].prize_share == pytest.approx(0.5)
    assert by_id[2].prize_share == pytest.approx(0.5)
    assert by_id[3].prize_share == 0.0
    assert ScoringEngine.prize_per_winner(scores, 1000.0) == pytest.approx(500.0)
    assert scores[-1].participant.id == 3


def test_discipline_below_threshold_cannot_win():
    participants = [_participant(1, completed=1, total=4), _participant(2, completed=4, total=4)]
    goals = {i: Goal(participant_id=i, target_weight=90.0, target_waist=90.0) for i in (1, 2)}
    latest = {1: _checkin(1, 90.0, 90.0), 2: _checkin(2, 90.0, 90.0)}

    scores = ScoringEngine.score_challenge(participants, goals, latest, 0.8, 500.0)
    winners = [s.participant.id for s in scores if s.is_winner]
    assert winners == [2]
    assert scores[0].prize_share == pytest.approx(1.0)


def test_everyone_wins_gets_stake_back_only():
    participants = [_participant(i) for i in (1, 2)]
    goals = {i: Goal(participant_id=i, target_weight=90.0, target_waist=90.0) for i in (1, 2)}
    latest = {i: _checkin(i, 90.0, 90.0) for i in (1, 2)}

    scores = ScoringEngine.score_challenge(participants, goals, latest, 0.8, 1000.0)
    assert all(s.is_winner for s in scores)
    assert all(s.prize_share == 0.0 for s in scores)
    assert ScoringEngine.prize_per_winner(scores, 1000.0) == 0.0
