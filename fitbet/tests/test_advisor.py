import pytest

from fitbet.features.advisor.service import (
    CheckinAdviceParams,
    GoalValidationParams,
    GroqAdvisor,
    NullAdvisor,
    build_checkin_prompt,
    parse_checkin_response,
    parse_validation_response,
)
from fitbet.tests.mocks import FakeGroq

GOAL = GoalValidationParams(
    track="cut",
    current_weight=100.0,
    current_waist=100.0,
    height=180.0,
    target_weight=90.0,
    target_waist=90.0,
    duration_months=6.0,
)

ADVICE = CheckinAdviceParams(
    track="cut",
    height=180.0,
    target_weight=90.0,
    target_waist=90.0,
    duration_months=1.0,
    start_weight=100.0,
    start_waist=100.0,
    current_weight=97.0,
    current_waist=98.0,
    checkin_number=2,
    total_checkins=2,
    completed_checkins=2,
    previous=[(1, 98.5, 99.0)],
    commitments=["No sugar"],
)


def test_goal_verdict_is_parsed():
    client = FakeGroq("VERDICT: too_aggressive\nFEEDBACK: Aim for 95 kg first.")
    advisor = GroqAdvisor(client=client, model="test-model")

    validation = advisor.validate_goal(GOAL)

    assert validation.result == "too_aggressive"
    assert validation.feedback == "Aim for 95 kg first."
    assert not validation.is_realistic
    call = client.chat.completions.calls[0]
    assert call["model"] == "test-model"
    assert "Current weight: 100.0 kg, target: 90.0 kg" in call["messages"][0]["content"]


def test_goal_validation_falls_back_on_error():
    advisor = GroqAdvisor(client=FakeGroq(error=RuntimeError("timeout")), model="test-model")
    validation = advisor.validate_goal(GOAL)
    assert validation.result == "realistic"


def test_unstructured_verdict_defaults_to_realistic():
    validation = parse_validation_response("Looks fine to me")
    assert validation.result == "realistic"
    assert validation.feedback == "Looks fine to me"


def test_checkin_advice_is_parsed():
    content = (
        "PROGRESS: Down 3 kg.\n"
        "BODY: Waist is shrinking.\n"
        "NUTRITION: Keep protein high.\n"
        "TRAINING: Add one session.\n"
        "MOTIVATION: Keep going!\n"
        "WARNINGS: fast loss, low sleep"
    )
    advisor = GroqAdvisor(client=FakeGroq(content), model="test-model")

    advice = advisor.get_checkin_advice(ADVICE)

    assert advice.progress_assessment == "Down 3 kg."
    assert advice.training_advice == "Add one session."
    assert advice.motivational_message == "Keep going!"
    assert advice.warning_flags == ["fast loss", "low sleep"]
    assert advice.llm_model == "test-model"
    assert advice.processing_time_ms is not None


def test_checkin_advice_raises_on_provider_error():
    advisor = GroqAdvisor(client=FakeGroq(error=RuntimeError("boom")), model="test-model")
    with pytest.raises(RuntimeError):
        advisor.get_checkin_advice(ADVICE)


def test_missing_sections_use_defaults():
    advice = parse_checkin_response("PROGRESS: Solid.\nWARNINGS: none", model="m")
    assert advice.progress_assessment == "Solid."
    assert advice.nutrition_advice
    assert advice.warning_flags == []


def test_prompt_includes_history_and_commitments():
    prompt = build_checkin_prompt(ADVICE)
    assert "#1: 98.5 kg / 99.0 cm" in prompt
    assert "- No sugar" in prompt
    assert "(-3.0)" in prompt


def test_null_advisor_returns_fresh_fallback():
    advisor = NullAdvisor()
    first = advisor.get_checkin_advice(ADVICE)
    first.warning_flags.append("mutated")
    assert advisor.get_checkin_advice(ADVICE).warning_flags == []
    assert advisor.validate_goal(GOAL).is_realistic
