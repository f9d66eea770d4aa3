from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from diabetes_service.models.models import ExerciseSession, GlucoseReading, HbA1cReading, Meal
from diabetes_service.models.schemas import MealType, MetricFamily, Unit
from diabetes_service.normalizer import (
    InvalidReadingError,
    InvalidSessionWindowError,
    ReadingOutOfBoundsError,
    UnsupportedUnitError,
    check_session_window,
    convert,
    exercise_glucose_pair,
    normalize,
    to_utc_naive,
    validate_reading,
)


def test_mg_dl_is_identity() -> None:
    assert convert(123.4, MetricFamily.GLUCOSE, Unit.MG_DL) == 123.4


def test_mmol_l_converts_by_18() -> None:
    assert convert(5.5, MetricFamily.GLUCOSE, Unit.MMOL_L) == 99.0
    assert convert(3.0, "glucose", "mmol/L") == 54.0


def test_mmol_l_round_trip_is_stable() -> None:
    for mg_dl in (40.0, 70.0, 99.0, 180.0, 400.0):
        assert convert(mg_dl / 18.0, MetricFamily.GLUCOSE, Unit.MMOL_L) == pytest.approx(mg_dl)


def test_unknown_unit_for_family_is_rejected() -> None:
    with pytest.raises(UnsupportedUnitError):
        convert(5.0, MetricFamily.HBA1C, Unit.MMOL_L)
    with pytest.raises(UnsupportedUnitError):
        convert(5.0, MetricFamily.GLUCOSE, "stone")


def test_unsupported_unit_is_a_value_error() -> None:
    assert issubclass(UnsupportedUnitError, ValueError)


def test_normalize_uses_family_measure() -> None:
    user = uuid.uuid4()
    glucose = GlucoseReading(user_id=user, value=6.0, unit=Unit.MMOL_L)
    hba1c = HbA1cReading(user_id=user, value=6.8, unit=Unit.PERCENT)
    session = ExerciseSession(user_id=user, exercise_type="Walking", duration_minutes=42.0)
    meal = Meal(user_id=user, meal_type=MealType.LUNCH, total_calories=550.0)

    assert normalize(glucose) == 108.0
    assert normalize(hba1c) == 6.8
    assert normalize(session) == 42.0
    assert normalize(meal) == 550.0


def test_missing_exercise_duration_counts_as_zero() -> None:
    session = ExerciseSession(user_id=uuid.uuid4(), exercise_type="Yoga")
    assert normalize(session) == 0.0


def test_validate_rejects_glucose_above_technical_bound() -> None:
    reading = GlucoseReading(user_id=uuid.uuid4(), value=1001.0, unit=Unit.MG_DL)
    with pytest.raises(ReadingOutOfBoundsError):
        validate_reading(reading)


def test_validate_applies_bound_after_conversion() -> None:
    # 60 mmol/L = 1080 mg/dL
    reading = GlucoseReading(user_id=uuid.uuid4(), value=60.0, unit=Unit.MMOL_L)
    with pytest.raises(ReadingOutOfBoundsError):
        validate_reading(reading)


def test_validate_accepts_bound_itself() -> None:
    reading = GlucoseReading(user_id=uuid.uuid4(), value=1000.0, unit=Unit.MG_DL)
    assert validate_reading(reading) == 1000.0


def test_validate_rejects_hba1c_above_twenty_percent() -> None:
    reading = HbA1cReading(user_id=uuid.uuid4(), value=20.5, unit=Unit.PERCENT)
    with pytest.raises(ReadingOutOfBoundsError):
        validate_reading(reading)


def test_validate_rejects_negative_duration() -> None:
    session = ExerciseSession(user_id=uuid.uuid4(), exercise_type="Run", duration_minutes=-5.0)
    with pytest.raises(ReadingOutOfBoundsError):
        validate_reading(session)


def test_validate_checks_exercise_glucose_unit() -> None:
    session = ExerciseSession(
        user_id=uuid.uuid4(),
        exercise_type="Run",
        duration_minutes=30.0,
        value_before=120.0,
        glucose_unit=Unit.PERCENT,
    )
    with pytest.raises(UnsupportedUnitError):
        validate_reading(session)


def test_validate_bounds_exercise_glucose_pair() -> None:
    session = ExerciseSession(
        user_id=uuid.uuid4(),
        exercise_type="Run",
        duration_minutes=30.0,
        value_before=100.0,
        value_after=50000.0,
    )
    with pytest.raises(ReadingOutOfBoundsError, match="value_after"):
        validate_reading(session)


def test_validate_bounds_exercise_pair_after_conversion() -> None:
    # 60 mmol/L = 1080 mg/dL
    session = ExerciseSession(
        user_id=uuid.uuid4(),
        exercise_type="Run",
        duration_minutes=30.0,
        value_before=60.0,
        glucose_unit=Unit.MMOL_L,
    )
    with pytest.raises(ReadingOutOfBoundsError, match="value_before"):
        validate_reading(session)

    session.value_before = 8.0
    assert validate_reading(session) == 30.0


def test_session_window() -> None:
    start = datetime(2026, 1, 1, 12, 0)
    check_session_window(start, None)
    check_session_window(start, start)
    with pytest.raises(InvalidSessionWindowError):
        check_session_window(start, datetime(2026, 1, 1, 7, 0))


def test_rejections_share_one_base() -> None:
    for exc in (UnsupportedUnitError, ReadingOutOfBoundsError, InvalidSessionWindowError):
        assert issubclass(exc, InvalidReadingError)


def test_exercise_pair_needs_both_values() -> None:
    user = uuid.uuid4()
    only_before = ExerciseSession(user_id=user, exercise_type="Run", value_before=150.0)
    assert exercise_glucose_pair(only_before) is None

    both = ExerciseSession(
        user_id=user,
        exercise_type="Run",
        value_before=8.0,
        value_after=6.0,
        glucose_unit=Unit.MMOL_L,
    )
    assert exercise_glucose_pair(both) == (144.0, 108.0)


def test_to_utc_naive() -> None:
    naive = datetime(2025, 3, 10, 8, 0)
    assert to_utc_naive(naive) == naive

    aware = datetime(2025, 3, 10, 8, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_utc_naive(aware) == datetime(2025, 3, 10, 6, 0)
