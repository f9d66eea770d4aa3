from __future__ import annotations

import uuid

from diabetes_service.models.models import ExerciseSession, GlucoseReading, HbA1cReading, Meal
from diabetes_service.models.schemas import (
    AdvisoryCategory,
    AdvisoryPriority,
    MealType,
    MetricFamily,
    TargetRange,
    TriggerType,
    Unit,
)
from diabetes_service.rules import RuleThresholds, evaluate

GLUCOSE_TARGET = TargetRange(family=MetricFamily.GLUCOSE, min_value=70, max_value=180, unit=Unit.MG_DL)
EXERCISE_TARGET = TargetRange(family=MetricFamily.EXERCISE, min_value=30, max_value=60, unit=Unit.MINUTES)
MEAL_TARGET = TargetRange(family=MetricFamily.MEAL, min_value=300, max_value=700, unit=Unit.KCAL)


def _glucose(value, unit=Unit.MG_DL):
    return GlucoseReading(user_id=uuid.uuid4(), value=value, unit=unit)


def _exercise(before, after, unit=Unit.MG_DL):
    return ExerciseSession(
        user_id=uuid.uuid4(),
        exercise_type="Running",
        duration_minutes=40.0,
        value_before=before,
        value_after=after,
        glucose_unit=unit,
    )


def _meal(*items):
    return Meal(user_id=uuid.uuid4(), meal_type=MealType.LUNCH, items=list(items))


# --- Glucose ---
def test_low_glucose_emits_one_high_priority_alert() -> None:
    reading = _glucose(55)
    drafts = evaluate(reading, GLUCOSE_TARGET)

    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.priority == AdvisoryPriority.HIGH
    assert draft.category == AdvisoryCategory.ALERT
    assert draft.trigger_type == TriggerType.BLOOD_SUGAR_LOW
    assert draft.trigger_payload["reading_id"] == str(reading.id)
    assert draft.trigger_payload["normalized_value"] == 55.0
    assert draft.trigger_payload["target_min"] == 70


def test_high_glucose_emits_medium_alert() -> None:
    drafts = evaluate(_glucose(250), GLUCOSE_TARGET)
    assert [d.trigger_type for d in drafts] == [TriggerType.BLOOD_SUGAR_HIGH]
    assert drafts[0].priority == AdvisoryPriority.MEDIUM


def test_glucose_at_boundaries_emits_nothing() -> None:
    assert evaluate(_glucose(70), GLUCOSE_TARGET) == []
    assert evaluate(_glucose(180), GLUCOSE_TARGET) == []
    assert evaluate(_glucose(120), GLUCOSE_TARGET) == []


def test_glucose_in_mmol_is_compared_in_mg_dl() -> None:
    # 3.0 mmol/L = 54 mg/dL
    drafts = evaluate(_glucose(3.0, Unit.MMOL_L), GLUCOSE_TARGET)
    assert [d.trigger_type for d in drafts] == [TriggerType.BLOOD_SUGAR_LOW]
    assert drafts[0].trigger_payload["unit"] == "mmol/L"
    assert drafts[0].trigger_payload["normalized_value"] == 54.0


def test_low_takes_precedence_on_inverted_range() -> None:
    inverted = TargetRange(family=MetricFamily.GLUCOSE, min_value=180, max_value=70, unit=Unit.MG_DL)
    drafts = evaluate(_glucose(100), inverted)
    assert [d.trigger_type for d in drafts] == [TriggerType.BLOOD_SUGAR_LOW]


# --- Exercise ---
def test_large_drop_after_exercise() -> None:
    session = _exercise(150, 110)
    drafts = evaluate(session, EXERCISE_TARGET)

    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.priority == AdvisoryPriority.MEDIUM
    assert draft.category == AdvisoryCategory.EXERCISE
    assert draft.trigger_type == TriggerType.EXERCISE_REMINDER
    assert draft.trigger_payload["change"] == -40.0
    assert draft.trigger_payload["exercise_id"] == str(session.id)


def test_unchanged_glucose_after_exercise_emits_nothing() -> None:
    assert evaluate(_exercise(100, 100), EXERCISE_TARGET) == []


def test_rise_after_exercise() -> None:
    drafts = evaluate(_exercise(100, 140), EXERCISE_TARGET)
    assert len(drafts) == 1
    assert drafts[0].priority == AdvisoryPriority.LOW
    assert drafts[0].title == "Blood Sugar Increased After Exercise"


def test_moderate_drop_is_positive_feedback() -> None:
    drafts = evaluate(_exercise(120, 100), EXERCISE_TARGET)
    assert len(drafts) == 1
    assert drafts[0].priority == AdvisoryPriority.LOW
    assert drafts[0].trigger_payload["change"] == -20.0


def test_drop_of_exactly_threshold_is_moderate() -> None:
    drafts = evaluate(_exercise(130, 100), EXERCISE_TARGET)
    assert len(drafts) == 1
    assert drafts[0].priority == AdvisoryPriority.LOW


def test_exercise_without_pair_emits_nothing() -> None:
    assert evaluate(_exercise(150, None), EXERCISE_TARGET) == []
    assert evaluate(_exercise(None, None), EXERCISE_TARGET) == []


def test_exercise_pair_in_mmol() -> None:
    # 9.0 -> 6.5 mmol/L is 162 -> 117 mg/dL
    drafts = evaluate(_exercise(9.0, 6.5, Unit.MMOL_L), EXERCISE_TARGET)
    assert len(drafts) == 1
    assert drafts[0].priority == AdvisoryPriority.MEDIUM
    assert drafts[0].trigger_payload["change"] == -45.0


def test_custom_threshold() -> None:
    drafts = evaluate(_exercise(120, 100), EXERCISE_TARGET, RuleThresholds(exercise_change=10))
    assert drafts[0].priority == AdvisoryPriority.MEDIUM


# --- Meals ---
def test_sugary_low_protein_meal_emits_both_advisories() -> None:
    meal = _meal(
        {"name": "Cake", "sugar": 40, "protein": 5},
        {"name": "Soda", "sugar": 20, "protein": 5},
    )
    drafts = evaluate(meal, MEAL_TARGET)

    assert len(drafts) == 2
    assert [d.title for d in drafts] == ["Reduce Sugar Intake", "Increase Protein Intake"]
    assert drafts[0].priority == AdvisoryPriority.HIGH
    assert drafts[1].priority == AdvisoryPriority.MEDIUM
    assert {d.trigger_payload["meal_id"] for d in drafts} == {str(meal.id)}
    assert all(d.category == AdvisoryCategory.FOOD for d in drafts)
    assert drafts[0].trigger_payload["total_sugar"] == 60.0


def test_single_item_meal_is_not_flagged_for_protein() -> None:
    meal = _meal({"name": "Apple", "sugar": 10, "protein": 0})
    assert evaluate(meal, MEAL_TARGET) == []


def test_balanced_meal_emits_nothing() -> None:
    meal = _meal(
        {"name": "Chicken", "protein": 30, "sugar": 0},
        {"name": "Rice", "protein": 4, "sugar": 1},
    )
    assert evaluate(meal, MEAL_TARGET) == []


def test_sugar_at_limit_is_not_flagged() -> None:
    meal = _meal({"name": "Juice", "sugar": 50, "protein": 20})
    assert evaluate(meal, MEAL_TARGET) == []


# --- HbA1c ---
def test_hba1c_has_no_rules() -> None:
    target = TargetRange(family=MetricFamily.HBA1C, min_value=4, max_value=7, unit=Unit.PERCENT)
    reading = HbA1cReading(user_id=uuid.uuid4(), value=9.5, unit=Unit.PERCENT)
    assert evaluate(reading, target) == []
