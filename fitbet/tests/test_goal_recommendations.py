from fitbet.features.goals.recommendations import (
    bmi_category,
    calculate_bmi,
    calculate_whtr,
    recommend_goals,
    whtr_status,
)


def test_cut_recommendation_takes_most_conservative_target():
    goals = recommend_goals("cut", current_weight=100.0, current_waist=100.0, height=180.0, duration_months=6)
    # safe loss over 24 weeks allows 82 kg, tighter than 10% (90) vs ideal +5% (75)
    assert goals.target_weight == 82
    assert goals.target_waist == 81


def test_bulk_recommendation_is_capped_by_safe_gain():
    goals = recommend_goals("bulk", current_weight=70.0, current_waist=80.0, height=180.0, duration_months=3)
    assert goals.target_weight == 74
    assert goals.target_waist == 82


def test_body_metrics():
    assert bmi_category(calculate_bmi(90.0, 180.0)) == "overweight"
    assert bmi_category(calculate_bmi(55.0, 180.0)) == "underweight"
    assert whtr_status(calculate_whtr(85.0, 180.0)) == "healthy"
    assert whtr_status(calculate_whtr(110.0, 180.0)) == "high risk"
