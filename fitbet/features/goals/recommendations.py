"""
Suggested goal targets from body metrics.

- Ideal weight from BMI 22 (middle of the healthy 18.5-24.9 range)
- Ideal waist from a waist-to-height ratio of 0.45
"""

import math
from dataclasses import dataclass

IDEAL_BMI = 22.0
IDEAL_WHTR = 0.45
SAFE_WEEKLY_LOSS_KG = 0.75
SAFE_WEEKLY_GAIN_KG = 0.35
WEEKS_PER_MONTH = 4


@dataclass
class RecommendedGoals:
    target_weight: float
    target_waist: float
    weight_reason: str
    waist_reason: str


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_bmi(weight: float, height_cm: float) -> float:
    height_m = height_cm / 100
    return weight / (height_m * height_m)


def calculate_whtr(waist: float, height_cm: float) -> float:
    return waist / height_cm


def bmi_category(bmi: float) -> str:
    if bmi < 18.5:
        return "underweight"
    if bmi < 25:
        return "normal"
    if bmi < 30:
        return "overweight"
    return "obese"


def whtr_status(whtr: float) -> str:
    if whtr < 0.4:
        return "very low"
    if whtr < 0.5:
        return "healthy"
    if whtr < 0.6:
        return "elevated risk"
    return "high risk"


def recommend_goals(
    track: str,
    current_weight: float,
    current_waist: float,
    height: float,
    duration_months: float,
) -> RecommendedGoals:
    height_m = height / 100
    ideal_weight = _round_half_up(IDEAL_BMI * height_m * height_m)
    ideal_waist = _round_half_up(height * IDEAL_WHTR)
    weeks = max(duration_months * WEEKS_PER_MONTH, 1e-9)

    if track == "cut":
        minus_10_percent = _round_half_up(current_weight * 0.9)
        ideal_plus_5_percent = _round_half_up(ideal_weight * 1.05)
        safest = _round_half_up(current_weight - duration_months * WEEKS_PER_MONTH * SAFE_WEEKLY_LOSS_KG)
        # Most conservative of the three
        target_weight = max(safest, min(minus_10_percent, ideal_plus_5_percent))
        weekly = (current_weight - target_weight) / weeks
        return RecommendedGoals(
            target_weight=target_weight,
            target_waist=min(current_waist - 5, ideal_waist),
            weight_reason=f"healthy BMI ~22 for {height:g} cm, about {weekly:.1f} kg/week loss",
            waist_reason="optimal waist-to-height ratio of 0.45",
        )

    safest = _round_half_up(current_weight + duration_months * WEEKS_PER_MONTH * SAFE_WEEKLY_GAIN_KG)
    target_weight = min(_round_half_up(ideal_weight * 1.07), safest)
    weekly = (target_weight - current_weight) / weeks
    return RecommendedGoals(
        target_weight=target_weight,
        target_waist=_round_half_up(current_waist + 2),
        weight_reason=f"lean mass gain of about {weekly:.2f} kg/week",
        waist_reason="slight increase from core muscle",
    )
