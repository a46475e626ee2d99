"""Advisory oracle: goal validation and per-checkin advice from an LLM.

Every call is bounded by a timeout and degrades to a neutral default, so an
unavailable model never blocks onboarding or a check-in.
"""

import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import List, Literal, Optional, Protocol

import groq

from fitbet.core.config import settings
from fitbet.core.logging import log_event
from fitbet.models.checkin import CheckinAdvice

logger = logging.getLogger("fitbet")

GoalVerdict = Literal["realistic", "too_aggressive", "too_easy"]


@dataclass
class GoalValidationParams:
    track: str
    current_weight: float
    current_waist: float
    height: float
    target_weight: float
    target_waist: float
    duration_months: float


@dataclass
class GoalValidation:
    result: GoalVerdict
    feedback: str

    @property
    def is_realistic(self) -> bool:
        return self.result == "realistic"


@dataclass
class CheckinAdviceParams:
    track: str
    height: float
    target_weight: Optional[float]
    target_waist: Optional[float]
    duration_months: float
    start_weight: float
    start_waist: float
    current_weight: float
    current_waist: float
    checkin_number: int
    total_checkins: int
    completed_checkins: int
    previous: List[tuple] = field(default_factory=list)  # (number, weight, waist)
    commitments: List[str] = field(default_factory=list)


class AdvisoryOracle(Protocol):
    def validate_goal(self, params: GoalValidationParams) -> GoalValidation:
        ...

    def get_checkin_advice(self, params: CheckinAdviceParams) -> CheckinAdvice:
        ...


FALLBACK_ADVICE = CheckinAdvice(
    progress_assessment="Keep working towards your goals.",
    body_composition_notes="Keep tracking your measurements consistently.",
    nutrition_advice="Keep your nutrition balanced and protein intake steady.",
    training_advice="Keep training regularly and progress gradually.",
    motivational_message="Great work, keep it up!",
    warning_flags=[],
    llm_model="fallback",
)


def fallback_goal_validation(reason: str = "Goal accepted (automatic validation disabled)") -> GoalValidation:
    return GoalValidation(result="realistic", feedback=reason)


class NullAdvisor:
    """Advisor used when no LLM is configured: accepts goals, returns generic advice."""

    def validate_goal(self, params: GoalValidationParams) -> GoalValidation:
        return fallback_goal_validation()

    def get_checkin_advice(self, params: CheckinAdviceParams) -> CheckinAdvice:
        return replace(FALLBACK_ADVICE, warning_flags=[])


def build_validation_prompt(params: GoalValidationParams) -> str:
    direction = "fat loss (cut)" if params.track == "cut" else "muscle gain (bulk)"
    return (
        "You are a certified fitness coach. Judge whether this body-composition goal is "
        "realistic for the given timeframe.\n\n"
        f"Track: {direction}\n"
        f"Height: {params.height} cm\n"
        f"Current weight: {params.current_weight} kg, target: {params.target_weight} kg\n"
        f"Current waist: {params.current_waist} cm, target: {params.target_waist} cm\n"
        f"Duration: {params.duration_months:.1f} months\n\n"
        "Answer strictly in this format:\n"
        "VERDICT: realistic | too_aggressive | too_easy\n"
        "FEEDBACK: [one or two sentences]"
    )


def parse_validation_response(content: str) -> GoalValidation:
    verdict_match = re.search(r"VERDICT:\s*(realistic|too_aggressive|too_easy)", content, re.I)
    feedback_match = re.search(r"FEEDBACK:\s*(.+)", content, re.I | re.S)
    verdict = verdict_match.group(1).lower() if verdict_match else "realistic"
    feedback = feedback_match.group(1).strip() if feedback_match else content.strip()
    return GoalValidation(result=verdict, feedback=feedback or "Goal accepted")


_ADVICE_SECTIONS = (
    ("PROGRESS", "progress_assessment"),
    ("BODY", "body_composition_notes"),
    ("NUTRITION", "nutrition_advice"),
    ("TRAINING", "training_advice"),
    ("MOTIVATION", "motivational_message"),
)


def build_checkin_prompt(params: CheckinAdviceParams) -> str:
    direction = "fat loss (cut)" if params.track == "cut" else "muscle gain (bulk)"
    weight_change = params.current_weight - params.start_weight
    waist_change = params.current_waist - params.start_waist
    height_m = params.height / 100
    bmi = params.current_weight / (height_m * height_m) if height_m else 0.0
    whtr = params.current_waist / params.height if params.height else 0.0

    lines = [
        "You are an experienced fitness coach and nutritionist. Assess the participant's progress.",
        "",
        f"Track: {direction}",
        f"Height: {params.height} cm",
        f"Challenge duration: {params.duration_months:.1f} months",
        f"Check-in #{params.checkin_number}, discipline {params.completed_checkins}/{params.total_checkins}",
        f"Targets: {params.target_weight} kg / {params.target_waist} cm",
        f"Start: {params.start_weight} kg / {params.start_waist} cm",
        f"Now: {params.current_weight} kg ({weight_change:+.1f}) / {params.current_waist} cm ({waist_change:+.1f})",
        f"BMI {bmi:.1f}, WHtR {whtr:.2f}",
    ]
    if params.previous:
        lines.append("History:")
        lines.extend(f"- #{n}: {w} kg / {c} cm" for n, w, c in params.previous)
    if params.commitments:
        lines.append("Commitments:")
        lines.extend(f"- {c}" for c in params.commitments)
    lines += [
        "",
        "Answer strictly in this format:",
        "PROGRESS: [2-3 sentences]",
        "BODY: [2-3 sentences]",
        "NUTRITION: [2-3 sentences]",
        "TRAINING: [2-3 sentences]",
        "MOTIVATION: [1-2 sentences]",
        'WARNINGS: [comma separated, or "none"]',
    ]
    return "\n".join(lines)


def parse_checkin_response(content: str, model: str, processing_time_ms: Optional[int] = None) -> CheckinAdvice:
    labels = [label for label, _ in _ADVICE_SECTIONS] + ["WARNINGS"]
    values = {}
    for index, (label, attr) in enumerate(_ADVICE_SECTIONS):
        following = "|".join(f"{l}:" for l in labels[index + 1:])
        match = re.search(rf"{label}:\s*(.+?)(?={following}|$)", content, re.I | re.S)
        values[attr] = match.group(1).strip() if match and match.group(1).strip() else getattr(FALLBACK_ADVICE, attr)

    warnings_match = re.search(r"WARNINGS:\s*(.+)", content, re.I | re.S)
    warnings_text = warnings_match.group(1).strip() if warnings_match else "none"
    flags = [] if warnings_text.lower() == "none" else [w.strip() for w in warnings_text.split(",") if w.strip()]

    return CheckinAdvice(
        warning_flags=flags,
        llm_model=model,
        processing_time_ms=processing_time_ms,
        **values,
    )


class GroqAdvisor:
    """Groq chat-completions advisor."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client=None,
    ):
        self.model = model or settings.GROQ_MODEL
        self.client = client or groq.Groq(
            api_key=api_key or settings.GROQ_API_KEY,
            timeout=timeout or settings.ADVISOR_TIMEOUT_SECONDS,
            max_retries=0,
        )

    def _complete(self, prompt: str, temperature: float, max_tokens: int) -> str:
        response = self.client.chat.completions.create(
            messages=[{"role": "user", "content": prompt}],
            model=self.model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""

    def validate_goal(self, params: GoalValidationParams) -> GoalValidation:
        try:
            content = self._complete(build_validation_prompt(params), temperature=0.3, max_tokens=512)
        except Exception as e:
            log_event("warning", "Goal validation failed, accepting goal", error_code="advisor_error",
                      extra={"error": str(e)})
            return fallback_goal_validation("Could not validate the goal, accepted automatically")
        return parse_validation_response(content)

    def get_checkin_advice(self, params: CheckinAdviceParams) -> CheckinAdvice:
        """Raises on provider failure; callers store nothing in that case."""
        started = time.monotonic()
        content = self._complete(build_checkin_prompt(params), temperature=0.7, max_tokens=1024)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return parse_checkin_response(content, model=self.model, processing_time_ms=elapsed_ms)


def get_advisor() -> AdvisoryOracle:
    if settings.GROQ_API_KEY:
        return GroqAdvisor()
    return NullAdvisor()
