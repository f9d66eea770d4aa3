from __future__ import annotations

import random
import uuid
from datetime import datetime, timedelta, timezone

from diabetes_service.aggregator import aggregate, glucose_impact, utc_day
from diabetes_service.models.models import ExerciseSession, GlucoseReading, Meal
from diabetes_service.models.schemas import (
    MealType,
    MetricFamily,
    ReadingType,
    TargetRange,
    Unit,
)
from diabetes_service.normalizer import exercise_glucose_pair, normalize
from diabetes_service.readings import view_for

GLUCOSE_TARGET = TargetRange(family=MetricFamily.GLUCOSE, min_value=70, max_value=180, unit=Unit.MG_DL)


def _glucose(value, reading_type=ReadingType.RANDOM, at=None, unit=Unit.MG_DL):
    return GlucoseReading(
        user_id=uuid.uuid4(),
        value=value,
        unit=unit,
        reading_type=reading_type,
        occurred_at=at or datetime(2025, 3, 10, 8, 0),
    )


def _aggregate_glucose(readings):
    view = view_for(MetricFamily.GLUCOSE)
    return aggregate(readings, GLUCOSE_TARGET, value_of=normalize, category_of=view.category_of)


def test_empty_window_is_all_zero() -> None:
    snapshot = _aggregate_glucose([])
    assert snapshot.count == 0
    assert snapshot.average == 0.0
    assert snapshot.min == 0.0
    assert snapshot.max == 0.0
    assert snapshot.in_range == snapshot.below_range == snapshot.above_range == 0
    assert snapshot.by_category == {}
    assert snapshot.by_day == {}
    assert snapshot.totals == {}


def test_range_buckets_partition_the_count() -> None:
    readings = [_glucose(v) for v in (55, 69.9, 70, 120, 180, 180.1, 250)]
    snapshot = _aggregate_glucose(readings)
    assert snapshot.count == 7
    assert snapshot.below_range == 2
    assert snapshot.in_range == 3
    assert snapshot.above_range == 2
    assert snapshot.in_range + snapshot.below_range + snapshot.above_range == snapshot.count


def test_boundaries_are_in_range() -> None:
    snapshot = _aggregate_glucose([_glucose(70), _glucose(180)])
    assert snapshot.in_range == 2
    assert snapshot.below_range == 0
    assert snapshot.above_range == 0


def test_summary_values() -> None:
    snapshot = _aggregate_glucose([_glucose(100), _glucose(200), _glucose(60)])
    assert snapshot.average == 120.0
    assert snapshot.min == 60.0
    assert snapshot.max == 200.0
    assert snapshot.target_min == 70
    assert snapshot.target_max == 180
    assert snapshot.unit == Unit.MG_DL


def test_mixed_units_are_normalized_before_classification() -> None:
    # 3.5 mmol/L = 63 mg/dL, 6.0 mmol/L = 108 mg/dL
    readings = [_glucose(3.5, unit=Unit.MMOL_L), _glucose(6.0, unit=Unit.MMOL_L), _glucose(108)]
    snapshot = _aggregate_glucose(readings)
    assert snapshot.below_range == 1
    assert snapshot.in_range == 2
    assert snapshot.min == 63.0


def test_groups_by_category_and_utc_day() -> None:
    readings = [
        _glucose(100, ReadingType.FASTING, datetime(2025, 3, 10, 7, 0)),
        _glucose(60, ReadingType.FASTING, datetime(2025, 3, 11, 7, 0)),
        _glucose(200, ReadingType.AFTER_MEAL, datetime(2025, 3, 11, 13, 0)),
    ]
    snapshot = _aggregate_glucose(readings)

    assert list(snapshot.by_category) == ["after_meal", "fasting"]
    assert snapshot.by_category["fasting"].count == 2
    assert snapshot.by_category["fasting"].sum == 160.0
    assert snapshot.by_category["fasting"].average == 80.0

    assert list(snapshot.by_day) == ["2025-03-10", "2025-03-11"]
    assert snapshot.by_day["2025-03-11"].count == 2
    assert snapshot.by_day["2025-03-11"].average == 130.0


def test_result_does_not_depend_on_input_order() -> None:
    values = [0.1, 0.2, 0.3, 71.7, 99.99, 123.456, 180.0, 250.5, 1e-9, 333.3]
    types = list(ReadingType)
    readings = [
        _glucose(v, types[i % len(types)], datetime(2025, 3, 1 + i % 4, i, 0))
        for i, v in enumerate(values)
    ]
    expected = _aggregate_glucose(readings).model_dump()

    rng = random.Random(7)
    for _ in range(20):
        shuffled = list(readings)
        rng.shuffle(shuffled)
        assert _aggregate_glucose(shuffled).model_dump() == expected


def test_aggregate_is_idempotent() -> None:
    readings = [_glucose(v) for v in (90, 95.5, 140, 210)]
    assert _aggregate_glucose(readings) == _aggregate_glucose(readings)


def test_meal_totals() -> None:
    user = uuid.uuid4()
    meals = [
        Meal(
            user_id=user,
            meal_type=MealType.LUNCH,
            occurred_at=datetime(2025, 3, 10, 12, 0),
            total_calories=600.0,
            total_sugar=30.0,
            total_protein=25.0,
        ),
        Meal(
            user_id=user,
            meal_type=MealType.SNACK,
            occurred_at=datetime(2025, 3, 10, 16, 0),
            total_calories=200.0,
            total_sugar=None,
        ),
    ]
    view = view_for(MetricFamily.MEAL)
    target = TargetRange(family=MetricFamily.MEAL, min_value=300, max_value=700, unit=Unit.KCAL)
    snapshot = aggregate(
        meals, target, value_of=normalize, category_of=view.category_of, totals_of=view.totals_of
    )

    assert snapshot.totals["calories"] == 800.0
    assert snapshot.totals["sugar"] == 30.0
    assert snapshot.totals["protein"] == 25.0
    assert snapshot.totals["fat"] == 0.0
    assert snapshot.in_range == 1
    assert snapshot.below_range == 1
    assert list(snapshot.by_category) == ["lunch", "snack"]


def test_utc_day_converts_aware_timestamps() -> None:
    reading = _glucose(100, at=datetime(2025, 3, 11, 1, 30, tzinfo=timezone(timedelta(hours=5))))
    assert utc_day(reading) == "2025-03-10"


def test_glucose_impact_skips_incomplete_sessions() -> None:
    user = uuid.uuid4()
    sessions = [
        ExerciseSession(user_id=user, exercise_type="Run", value_before=150.0, value_after=110.0),
        ExerciseSession(user_id=user, exercise_type="Run", value_before=100.0, value_after=120.0),
        ExerciseSession(user_id=user, exercise_type="Yoga", value_before=130.0),
    ]
    impact = glucose_impact(exercise_glucose_pair(s) for s in sessions)
    assert impact.readings == 2
    assert impact.average_change == -10.0


def test_glucose_impact_of_nothing() -> None:
    impact = glucose_impact([])
    assert impact.readings == 0
    assert impact.average_change == 0.0
