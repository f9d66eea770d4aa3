# diabetes_service/readings.py

"""
Per-family accessors.

Everything the aggregator and pipeline need to know about a metric family
lives here: which table stores it, how a stored row is serialized, which
field groups it into categories, and which quantities are summed into the
window totals.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Type

from pydantic import BaseModel
from sqlmodel import SQLModel

from .models.models import ExerciseSession, GlucoseReading, HbA1cReading, Meal
from .models.schemas import (
    ExerciseSessionOut,
    GlucoseReadingOut,
    HbA1cReadingOut,
    HbA1cSource,
    MealOut,
    MealType,
    MetricFamily,
    ReadingType,
)

NUTRIENTS = ("calories", "carbs", "protein", "fat", "sugar")


def _label(value: Any) -> str:
    # Enum members group by their wire value; free text is used as-is
    return str(getattr(value, "value", value))


@dataclass(frozen=True)
class FamilyView:
    family: MetricFamily
    model: Type[SQLModel]
    out_schema: Type[BaseModel]
    # Column that groups readings into categories, and its enum (None for free text)
    category_field: str
    category_enum: Optional[Type[Enum]] = None
    totals_of: Optional[Callable[[Any], Dict[str, Optional[float]]]] = None

    def category_of(self, reading) -> str:
        return _label(getattr(reading, self.category_field))

    def category_value(self, raw: str):
        """Query-string category as a column value. Raises ValueError if unknown."""
        return self.category_enum(raw) if self.category_enum else raw


def _exercise_totals(session: ExerciseSession) -> Dict[str, Optional[float]]:
    return {
        "duration_minutes": session.duration_minutes,
        "calories_burned": session.calories_burned,
        "distance": session.distance,
        "steps": session.steps,
    }


def _meal_totals(meal: Meal) -> Dict[str, Optional[float]]:
    return {name: getattr(meal, f"total_{name}") for name in NUTRIENTS}


FAMILY_VIEWS: Dict[MetricFamily, FamilyView] = {
    MetricFamily.GLUCOSE: FamilyView(
        family=MetricFamily.GLUCOSE,
        model=GlucoseReading,
        out_schema=GlucoseReadingOut,
        category_field="reading_type",
        category_enum=ReadingType,
    ),
    MetricFamily.HBA1C: FamilyView(
        family=MetricFamily.HBA1C,
        model=HbA1cReading,
        out_schema=HbA1cReadingOut,
        category_field="source",
        category_enum=HbA1cSource,
    ),
    MetricFamily.EXERCISE: FamilyView(
        family=MetricFamily.EXERCISE,
        model=ExerciseSession,
        out_schema=ExerciseSessionOut,
        category_field="exercise_type",
        totals_of=_exercise_totals,
    ),
    MetricFamily.MEAL: FamilyView(
        family=MetricFamily.MEAL,
        model=Meal,
        out_schema=MealOut,
        category_field="meal_type",
        category_enum=MealType,
        totals_of=_meal_totals,
    ),
}


def view_for(family) -> FamilyView:
    return FAMILY_VIEWS[MetricFamily(family)]


# =====================================================
# Derived fields, filled before persistence
# =====================================================
def item_totals(items: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    """Sum each nutrient across a meal's items; missing values count as 0."""
    items = list(items)
    return {name: sum(float(item.get(name) or 0.0) for item in items) for name in NUTRIENTS}


def fill_meal_totals(meal: Meal) -> None:
    """Fill any total the client left out from the itemized composition."""
    sums = item_totals(meal.items or [])
    for name in NUTRIENTS:
        attr = f"total_{name}"
        if getattr(meal, attr) is None:
            setattr(meal, attr, sums[name])


def fill_exercise_duration(session: ExerciseSession) -> None:
    if session.duration_minutes is None and session.end_time is not None:
        delta: datetime = session.end_time - session.occurred_at
        session.duration_minutes = delta.total_seconds() / 60.0
