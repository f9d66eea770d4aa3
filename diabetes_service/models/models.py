"""Data models for the diabetes service.

Reading tables (one per metric family), per-user target ranges, and the
advisories emitted by the rule evaluator.
"""

# diabetes_service/models/models.py
import uuid
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel, UniqueConstraint

from ..normalizer import utc_now
from .schemas import (
    AdvisoryCategory,
    AdvisoryPriority,
    EntryMethod,
    ExerciseCategory,
    ExerciseIntensity,
    HbA1cSource,
    MealType,
    MetricFamily,
    ReadingType,
    TriggerType,
    Unit,
)


# Timestamps are naive UTC. Every datetime column is declared as a plain
# DateTime so newer sqlmodel releases do not swap in a tz-aware column type.


# --- Readings ---
class GlucoseReading(SQLModel, table=True):
    __tablename__ = "glucose_readings"
    family: ClassVar[MetricFamily] = MetricFamily.GLUCOSE

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)

    value: float = Field(nullable=False)
    unit: Unit = Field(default=Unit.MG_DL)

    # When the sample was taken (naive UTC)
    occurred_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime)
    reading_type: ReadingType = Field(default=ReadingType.RANDOM)
    entry_method: EntryMethod = Field(default=EntryMethod.MANUAL)
    device_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    notes: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: Optional[datetime] = Field(default_factory=utc_now, sa_type=DateTime)


class HbA1cReading(SQLModel, table=True):
    __tablename__ = "hba1c_readings"
    family: ClassVar[MetricFamily] = MetricFamily.HBA1C

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)

    value: float = Field(nullable=False)
    unit: Unit = Field(default=Unit.PERCENT)
    occurred_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime)
    source: HbA1cSource = Field(default=HbA1cSource.MANUAL)

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: Optional[datetime] = Field(default_factory=utc_now, sa_type=DateTime)


class ExerciseSession(SQLModel, table=True):
    __tablename__ = "exercise_sessions"
    family: ClassVar[MetricFamily] = MetricFamily.EXERCISE

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)

    exercise_type: str = Field(nullable=False)
    category: ExerciseCategory = Field(default=ExerciseCategory.CARDIO)
    intensity: Optional[ExerciseIntensity] = Field(default=None)

    # Session start
    occurred_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime)
    end_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    duration_minutes: Optional[float] = Field(default=None)
    calories_burned: Optional[float] = Field(default=None)
    distance: Optional[float] = Field(default=None)
    steps: Optional[int] = Field(default=None)
    heart_rate_avg: Optional[int] = Field(default=None)
    heart_rate_max: Optional[int] = Field(default=None)

    # Blood sugar measured around the session, in glucose_unit
    value_before: Optional[float] = Field(default=None)
    value_after: Optional[float] = Field(default=None)
    glucose_unit: Unit = Field(default=Unit.MG_DL)

    notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: Optional[datetime] = Field(default_factory=utc_now, sa_type=DateTime)


class Meal(SQLModel, table=True):
    __tablename__ = "meals"
    family: ClassVar[MetricFamily] = MetricFamily.MEAL

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)

    meal_type: MealType = Field(nullable=False)
    occurred_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime)

    # Itemized composition: [{name, quantity, unit, calories, carbs, protein, fat, sugar}]
    items: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    total_calories: Optional[float] = Field(default=None)
    total_carbs: Optional[float] = Field(default=None)
    total_protein: Optional[float] = Field(default=None)
    total_fat: Optional[float] = Field(default=None)
    total_sugar: Optional[float] = Field(default=None)

    notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: Optional[datetime] = Field(default_factory=utc_now, sa_type=DateTime)


# --- Target Ranges ---
class TargetRangeSetting(SQLModel, table=True):
    """Per-user band for one metric family; absent rows fall back to defaults."""

    __tablename__ = "target_ranges"
    # One band per family per user
    __table_args__ = (
        UniqueConstraint("user_id", "family", name="unique_user_family_target_range"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)
    family: MetricFamily = Field(nullable=False)

    min_value: float = Field(nullable=False)
    max_value: float = Field(nullable=False)
    unit: Unit = Field(nullable=False)

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: Optional[datetime] = Field(default_factory=utc_now, sa_type=DateTime)


# --- Advisories ---
class Advisory(SQLModel, table=True):
    """A prioritized note produced by a rule match (or created manually)."""

    __tablename__ = "advisories"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    user_id: uuid.UUID = Field(index=True, nullable=False)

    category: AdvisoryCategory = Field(nullable=False)
    priority: AdvisoryPriority = Field(default=AdvisoryPriority.MEDIUM)
    # low=0 .. urgent=3, for ordering in SQL
    priority_rank: int = Field(default=1, index=True)

    title: str = Field(nullable=False)
    description: str = Field(nullable=False)
    suggested_action: Optional[str] = Field(default=None)

    # Which rule fired, and the inputs it saw
    trigger_type: TriggerType = Field(nullable=False)
    trigger_payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    trigger_time: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime)
    valid_until: Optional[datetime] = Field(default=None, sa_type=DateTime)

    # Client-side state
    is_read: bool = Field(default=False)
    is_dismissed: bool = Field(default=False)
    action_taken: bool = Field(default=False)
    action_details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: Optional[datetime] = Field(default_factory=utc_now, sa_type=DateTime)
