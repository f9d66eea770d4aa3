# diabetes_service/rules.py

"""
Rule Evaluator

Maps one newly recorded event (plus the user's target range, in canonical
units) to zero or more advisory drafts. Every rule is a pure predicate with
its own builder; all matching rules fire, there is no first-match
short-circuit. Nothing here touches the database.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

from . import config
from .models.schemas import (
    AdvisoryCategory,
    AdvisoryDraft,
    AdvisoryPriority,
    MetricFamily,
    TargetRange,
    TriggerType,
)
from .normalizer import exercise_glucose_pair, normalize
from .readings import item_totals


@dataclass(frozen=True)
class RuleThresholds:
    exercise_change: float = config.EXERCISE_SIGNIFICANT_CHANGE
    meal_sugar_limit: float = config.MEAL_SUGAR_LIMIT
    meal_protein_min: float = config.MEAL_PROTEIN_MIN


DEFAULT_THRESHOLDS = RuleThresholds()

Predicate = Callable[[Any, TargetRange, RuleThresholds], bool]
Builder = Callable[[Any, TargetRange, RuleThresholds], AdvisoryDraft]


@dataclass(frozen=True)
class Rule:
    name: str
    applies: Predicate
    build: Builder


def _fmt(value: float) -> str:
    return f"{value:g}"


# =====================================================
# Glucose
# =====================================================
def _glucose_low(reading, target: TargetRange, th: RuleThresholds) -> bool:
    return normalize(reading) < target.min_value


def _glucose_high(reading, target: TargetRange, th: RuleThresholds) -> bool:
    value = normalize(reading)
    # On an inverted range both could hold; hypoglycemia takes precedence
    return value > target.max_value and not value < target.min_value


def _glucose_payload(reading, **threshold) -> Dict[str, Any]:
    return {
        "reading_id": str(reading.id),
        "value": reading.value,
        "unit": reading.unit.value,
        "normalized_value": normalize(reading),
        **threshold,
    }


def _build_glucose_low(reading, target: TargetRange, th: RuleThresholds) -> AdvisoryDraft:
    return AdvisoryDraft(
        category=AdvisoryCategory.ALERT,
        priority=AdvisoryPriority.HIGH,
        title="Low Blood Sugar Detected",
        description=(
            f"Your blood sugar reading of {_fmt(reading.value)} {reading.unit.value} "
            "is below your target range."
        ),
        suggested_action=(
            "Consider consuming 15-20 grams of fast-acting carbohydrates, "
            "such as juice or glucose tablets."
        ),
        trigger_type=TriggerType.BLOOD_SUGAR_LOW,
        trigger_payload=_glucose_payload(reading, target_min=target.min_value),
    )


def _build_glucose_high(reading, target: TargetRange, th: RuleThresholds) -> AdvisoryDraft:
    return AdvisoryDraft(
        category=AdvisoryCategory.ALERT,
        priority=AdvisoryPriority.MEDIUM,
        title="High Blood Sugar Detected",
        description=(
            f"Your blood sugar reading of {_fmt(reading.value)} {reading.unit.value} "
            "is above your target range."
        ),
        suggested_action=(
            "Consider drinking water and taking a short walk. "
            "Check your blood sugar again in 1-2 hours."
        ),
        trigger_type=TriggerType.BLOOD_SUGAR_HIGH,
        trigger_payload=_glucose_payload(reading, target_max=target.max_value),
    )


# =====================================================
# Exercise (before/after pair on the same session)
# =====================================================
def _change(session) -> Tuple[float, float, float]:
    before, after = exercise_glucose_pair(session)
    return before, after, after - before


def _has_pair(session) -> bool:
    return exercise_glucose_pair(session) is not None


def _exercise_drop(session, target: TargetRange, th: RuleThresholds) -> bool:
    return _has_pair(session) and _change(session)[2] < -th.exercise_change


def _exercise_rise(session, target: TargetRange, th: RuleThresholds) -> bool:
    return _has_pair(session) and _change(session)[2] > th.exercise_change


def _exercise_moderate_drop(session, target: TargetRange, th: RuleThresholds) -> bool:
    return _has_pair(session) and -th.exercise_change <= _change(session)[2] < 0


def _exercise_draft(session, th, priority, title, description, action) -> AdvisoryDraft:
    before, after, change = _change(session)
    return AdvisoryDraft(
        category=AdvisoryCategory.EXERCISE,
        priority=priority,
        title=title,
        description=description,
        suggested_action=action,
        trigger_type=TriggerType.EXERCISE_REMINDER,
        trigger_payload={
            "exercise_id": str(session.id),
            "before": before,
            "after": after,
            "change": change,
            "unit": "mg/dL",
            "threshold": th.exercise_change,
        },
    )


def _build_exercise_drop(session, target: TargetRange, th: RuleThresholds) -> AdvisoryDraft:
    change = _change(session)[2]
    return _exercise_draft(
        session,
        th,
        AdvisoryPriority.MEDIUM,
        "Significant Blood Sugar Drop After Exercise",
        f"Your blood sugar dropped by {_fmt(abs(change))} mg/dL after your "
        f"{session.exercise_type} session.",
        "Consider having a small snack before similar exercise in the future "
        "to prevent low blood sugar.",
    )


def _build_exercise_rise(session, target: TargetRange, th: RuleThresholds) -> AdvisoryDraft:
    change = _change(session)[2]
    return _exercise_draft(
        session,
        th,
        AdvisoryPriority.LOW,
        "Blood Sugar Increased After Exercise",
        f"Your blood sugar increased by {_fmt(change)} mg/dL after your "
        f"{session.exercise_type} session.",
        "This can happen with high-intensity exercise. Consider moderate-intensity "
        "exercise if managing blood sugar is a priority.",
    )


def _build_exercise_moderate_drop(session, target: TargetRange, th: RuleThresholds) -> AdvisoryDraft:
    change = _change(session)[2]
    return _exercise_draft(
        session,
        th,
        AdvisoryPriority.LOW,
        "Positive Exercise Impact on Blood Sugar",
        f"Your {session.exercise_type} session helped lower your blood sugar by "
        f"{_fmt(abs(change))} mg/dL.",
        "This type of exercise seems effective for you. Consider making it a regular "
        "part of your routine.",
    )


# =====================================================
# Meals (aggregate of one meal's items)
# =====================================================
def _meal_high_sugar(meal, target: TargetRange, th: RuleThresholds) -> bool:
    return item_totals(meal.items or [])["sugar"] > th.meal_sugar_limit


def _meal_low_protein(meal, target: TargetRange, th: RuleThresholds) -> bool:
    items = meal.items or []
    return item_totals(items)["protein"] < th.meal_protein_min and len(items) > 1


def _build_meal_high_sugar(meal, target: TargetRange, th: RuleThresholds) -> AdvisoryDraft:
    return AdvisoryDraft(
        category=AdvisoryCategory.FOOD,
        priority=AdvisoryPriority.HIGH,
        title="Reduce Sugar Intake",
        description="Your meal contains more sugar than recommended for a single meal.",
        suggested_action="Try replacing sugary items with fruits or lower-sugar alternatives.",
        trigger_type=TriggerType.FOOD_ANALYSIS,
        trigger_payload={
            "meal_id": str(meal.id),
            "concern": "high_sugar",
            "total_sugar": item_totals(meal.items or [])["sugar"],
            "threshold": th.meal_sugar_limit,
        },
    )


def _build_meal_low_protein(meal, target: TargetRange, th: RuleThresholds) -> AdvisoryDraft:
    items = meal.items or []
    return AdvisoryDraft(
        category=AdvisoryCategory.FOOD,
        priority=AdvisoryPriority.MEDIUM,
        title="Increase Protein Intake",
        description=(
            "This meal is low in protein which is important for muscle maintenance "
            "and satiety."
        ),
        suggested_action=(
            "Try adding lean protein sources like chicken, fish, tofu, or legumes "
            "to your meals."
        ),
        trigger_type=TriggerType.FOOD_ANALYSIS,
        trigger_payload={
            "meal_id": str(meal.id),
            "concern": "low_protein",
            "total_protein": item_totals(items)["protein"],
            "item_count": len(items),
            "threshold": th.meal_protein_min,
        },
    )


RULES: Dict[MetricFamily, Tuple[Rule, ...]] = {
    MetricFamily.GLUCOSE: (
        Rule("glucose_low", _glucose_low, _build_glucose_low),
        Rule("glucose_high", _glucose_high, _build_glucose_high),
    ),
    MetricFamily.EXERCISE: (
        Rule("exercise_drop", _exercise_drop, _build_exercise_drop),
        Rule("exercise_rise", _exercise_rise, _build_exercise_rise),
        Rule("exercise_moderate_drop", _exercise_moderate_drop, _build_exercise_moderate_drop),
    ),
    MetricFamily.MEAL: (
        Rule("meal_high_sugar", _meal_high_sugar, _build_meal_high_sugar),
        Rule("meal_low_protein", _meal_low_protein, _build_meal_low_protein),
    ),
    # No advisory rules for HbA1c labs
    MetricFamily.HBA1C: (),
}


def evaluate(
    event, target_range: TargetRange, thresholds: RuleThresholds = DEFAULT_THRESHOLDS
) -> List[AdvisoryDraft]:
    """Drafts for every rule of the event's family whose predicate holds."""
    return [
        rule.build(event, target_range, thresholds)
        for rule in RULES[event.family]
        if rule.applies(event, target_range, thresholds)
    ]
