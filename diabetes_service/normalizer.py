# diabetes_service/normalizer.py

"""
Unit Normalizer

Maps a reading's value into the one canonical unit of its metric family
before any statistic or rule sees it. Unknown (family, unit) pairs are
configuration/input errors and are raised, never coerced.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from . import config
from .models.schemas import MetricFamily, Unit

CANONICAL_UNITS = {
    MetricFamily.GLUCOSE: Unit.MG_DL,
    MetricFamily.HBA1C: Unit.PERCENT,
    MetricFamily.EXERCISE: Unit.MINUTES,
    MetricFamily.MEAL: Unit.KCAL,
}

# Multiplier from (family, unit) to the family's canonical unit
_FACTORS = {
    (MetricFamily.GLUCOSE, Unit.MG_DL): 1.0,
    (MetricFamily.GLUCOSE, Unit.MMOL_L): config.MMOL_L_TO_MG_DL,
    (MetricFamily.HBA1C, Unit.PERCENT): 1.0,
    (MetricFamily.EXERCISE, Unit.MINUTES): 1.0,
    (MetricFamily.MEAL, Unit.KCAL): 1.0,
}

# Upper technical bounds, canonical units. Distinct from any target range.
_TECHNICAL_MAX = {
    MetricFamily.GLUCOSE: config.GLUCOSE_MAX_MG_DL,
    MetricFamily.HBA1C: config.HBA1C_MAX_PERCENT,
}


class InvalidReadingError(ValueError):
    """A reading that must be rejected before it is persisted."""


class UnsupportedUnitError(InvalidReadingError):
    """The unit is not defined for the metric family."""


class ReadingOutOfBoundsError(InvalidReadingError):
    """The value is outside what a meter could technically report."""


class InvalidSessionWindowError(InvalidReadingError):
    """An exercise session ends before it starts."""


def _coerce(family, unit) -> Tuple[MetricFamily, Unit]:
    try:
        return MetricFamily(family), Unit(unit)
    except ValueError as e:
        raise UnsupportedUnitError(f"unknown family/unit {family!r}/{unit!r}") from e


def convert(value: float, family, unit) -> float:
    """Convert `value` expressed in `unit` into the canonical unit of `family`."""
    fam, u = _coerce(family, unit)
    factor = _FACTORS.get((fam, u))
    if factor is None:
        raise UnsupportedUnitError(f"unit {u.value} is not supported for {fam.value}")
    return float(value) * factor


def measured_value(reading) -> Tuple[float, Unit]:
    """Raw (value, unit) of a stored reading, before conversion."""
    family = reading.family
    if family == MetricFamily.EXERCISE:
        return float(reading.duration_minutes or 0.0), Unit.MINUTES
    if family == MetricFamily.MEAL:
        return float(reading.total_calories or 0.0), Unit.KCAL
    return float(reading.value), reading.unit


def normalize(reading) -> float:
    """Value of `reading` in its family's canonical unit."""
    value, unit = measured_value(reading)
    return convert(value, reading.family, unit)


def _check_bounds(family: MetricFamily, value: float, label: str) -> None:
    if value < 0:
        raise ReadingOutOfBoundsError(f"{label} must be >= 0")
    upper = _TECHNICAL_MAX.get(family)
    if upper is not None and value > upper:
        canonical = CANONICAL_UNITS[family].value
        raise ReadingOutOfBoundsError(
            f"{label} {value:g} {canonical} exceeds technical bound {upper:g}"
        )


def validate_reading(reading) -> float:
    """
    Check a reading before persistence: legal unit, non-negative value and
    the family's lenient technical bound. Returns the normalized value.
    """
    value = normalize(reading)
    _check_bounds(reading.family, value, f"{reading.family.value} value")
    if reading.family == MetricFamily.EXERCISE:
        # The before/after pair is glucose; the glucose bound applies
        for name in ("value_before", "value_after"):
            raw = getattr(reading, name)
            if raw is not None:
                glucose = convert(raw, MetricFamily.GLUCOSE, reading.glucose_unit)
                _check_bounds(MetricFamily.GLUCOSE, glucose, name)
    return value


def check_session_window(start: datetime, end: Optional[datetime]) -> None:
    """Both ends must already be naive UTC."""
    if end is not None and end < start:
        raise InvalidSessionWindowError("end_time must be >= occurred_at")


def exercise_glucose_pair(session) -> Optional[Tuple[float, float]]:
    """(before, after) in mg/dL, or None unless both values are present."""
    if session.value_before is None or session.value_after is None:
        return None
    before = convert(session.value_before, MetricFamily.GLUCOSE, session.glucose_unit)
    after = convert(session.value_after, MetricFamily.GLUCOSE, session.glucose_unit)
    return before, after


# =====================================================
# Time
# =====================================================
def to_utc_naive(ts: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
