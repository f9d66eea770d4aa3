# diabetes_service/models/schemas.py
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import UUID4, BaseModel, ConfigDict, Field, field_validator, model_validator


# =====================================================
# Enums
# =====================================================
class MetricFamily(str, Enum):
    GLUCOSE = "glucose"
    HBA1C = "hba1c"
    EXERCISE = "exercise"
    MEAL = "meal"


class Unit(str, Enum):
    MG_DL = "mg/dL"
    MMOL_L = "mmol/L"
    PERCENT = "percent"
    MINUTES = "min"
    KCAL = "kcal"


class ReadingType(str, Enum):
    FASTING = "fasting"
    BEFORE_MEAL = "before_meal"
    AFTER_MEAL = "after_meal"
    BEFORE_EXERCISE = "before_exercise"
    AFTER_EXERCISE = "after_exercise"
    BEDTIME = "bedtime"
    RANDOM = "random"
    CONTINUOUS_MONITOR = "continuous_monitor"


class EntryMethod(str, Enum):
    MANUAL = "manual"
    DEVICE = "device"
    API = "api"


class HbA1cSource(str, Enum):
    MANUAL = "manual"
    LAB_REPORT = "lab_report"


class ExerciseCategory(str, Enum):
    CARDIO = "cardio"
    STRENGTH = "strength"
    FLEXIBILITY = "flexibility"
    BALANCE = "balance"
    OTHER = "other"


class ExerciseIntensity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class AdvisoryCategory(str, Enum):
    FOOD = "food"
    EXERCISE = "exercise"
    MEDICATION = "medication"
    GENERAL = "general"
    ALERT = "alert"


class AdvisoryPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Stored alongside each advisory so listings can sort urgent-first in SQL
PRIORITY_RANK: Dict[AdvisoryPriority, int] = {
    AdvisoryPriority.LOW: 0,
    AdvisoryPriority.MEDIUM: 1,
    AdvisoryPriority.HIGH: 2,
    AdvisoryPriority.URGENT: 3,
}


class TriggerType(str, Enum):
    BLOOD_SUGAR_HIGH = "blood_sugar_high"
    BLOOD_SUGAR_LOW = "blood_sugar_low"
    FOOD_ANALYSIS = "food_analysis"
    EXERCISE_REMINDER = "exercise_reminder"
    INACTIVITY = "inactivity"
    PATTERN = "pattern"
    SCHEDULED = "scheduled"
    OTHER = "other"


class StatisticsPeriod(str, Enum):
    LAST_24_HOURS = "24hours"
    LAST_7_DAYS = "7days"
    LAST_30_DAYS = "30days"
    LAST_90_DAYS = "90days"


PERIOD_WINDOWS: Dict[StatisticsPeriod, timedelta] = {
    StatisticsPeriod.LAST_24_HOURS: timedelta(hours=24),
    StatisticsPeriod.LAST_7_DAYS: timedelta(days=7),
    StatisticsPeriod.LAST_30_DAYS: timedelta(days=30),
    StatisticsPeriod.LAST_90_DAYS: timedelta(days=90),
}


# =====================================================
# Readings: Glucose
# =====================================================
class GlucoseReadingCreate(BaseModel):
    value: float = Field(..., ge=0, description="Reading in `unit`")
    unit: Unit = Unit.MG_DL
    # Server defaults to now (UTC) if missing
    occurred_at: Optional[datetime] = None
    reading_type: ReadingType = ReadingType.RANDOM
    entry_method: EntryMethod = EntryMethod.MANUAL
    device_info: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class GlucoseReadingUpdate(BaseModel):
    value: Optional[float] = Field(None, ge=0)
    unit: Optional[Unit] = None
    occurred_at: Optional[datetime] = None
    reading_type: Optional[ReadingType] = None
    notes: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class GlucoseReadingOut(BaseModel):
    id: UUID4
    user_id: UUID4
    value: float
    unit: Unit
    occurred_at: datetime
    reading_type: ReadingType
    entry_method: EntryMethod
    device_info: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# =====================================================
# Readings: HbA1c
# =====================================================
class HbA1cReadingCreate(BaseModel):
    value: float = Field(..., ge=0, description="HbA1c %")
    unit: Unit = Unit.PERCENT
    occurred_at: Optional[datetime] = None
    source: HbA1cSource = HbA1cSource.MANUAL
    model_config = ConfigDict(extra="forbid")


class HbA1cReadingUpdate(BaseModel):
    value: Optional[float] = Field(None, ge=0)
    occurred_at: Optional[datetime] = None
    source: Optional[HbA1cSource] = None
    model_config = ConfigDict(extra="forbid")


class HbA1cReadingOut(BaseModel):
    id: UUID4
    user_id: UUID4
    value: float
    unit: Unit
    occurred_at: datetime
    source: HbA1cSource
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# =====================================================
# Readings: Exercise
# =====================================================
def _utc(ts: datetime) -> datetime:
    # Naive values are taken as UTC so mixed inputs still compare
    return ts.astimezone(timezone.utc).replace(tzinfo=None) if ts.tzinfo else ts


class ExerciseSessionCreate(BaseModel):
    exercise_type: str = Field(..., min_length=1, description="Walking, Running, Yoga, ...")
    category: ExerciseCategory = ExerciseCategory.CARDIO
    intensity: Optional[ExerciseIntensity] = None
    # Session start; server defaults to now (UTC) if missing
    occurred_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[float] = Field(None, ge=0)
    calories_burned: Optional[float] = Field(None, ge=0)
    distance: Optional[float] = Field(None, ge=0)
    steps: Optional[int] = Field(None, ge=0)
    heart_rate_avg: Optional[int] = Field(None, gt=0, lt=300)
    heart_rate_max: Optional[int] = Field(None, gt=0, lt=300)

    # Blood sugar around the session; both are needed for impact analysis
    value_before: Optional[float] = Field(None, ge=0)
    value_after: Optional[float] = Field(None, ge=0)
    glucose_unit: Unit = Unit.MG_DL

    notes: Optional[str] = None
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_session_window(self):
        if self.occurred_at and self.end_time and _utc(self.end_time) < _utc(self.occurred_at):
            raise ValueError("end_time must be >= occurred_at")
        return self


class ExerciseSessionUpdate(BaseModel):
    exercise_type: Optional[str] = Field(None, min_length=1)
    category: Optional[ExerciseCategory] = None
    intensity: Optional[ExerciseIntensity] = None
    occurred_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[float] = Field(None, ge=0)
    calories_burned: Optional[float] = Field(None, ge=0)
    distance: Optional[float] = Field(None, ge=0)
    steps: Optional[int] = Field(None, ge=0)
    heart_rate_avg: Optional[int] = Field(None, gt=0, lt=300)
    heart_rate_max: Optional[int] = Field(None, gt=0, lt=300)
    value_before: Optional[float] = Field(None, ge=0)
    value_after: Optional[float] = Field(None, ge=0)
    glucose_unit: Optional[Unit] = None
    notes: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class ExerciseSessionOut(BaseModel):
    id: UUID4
    user_id: UUID4
    exercise_type: str
    category: ExerciseCategory
    intensity: Optional[ExerciseIntensity] = None
    occurred_at: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[float] = None
    calories_burned: Optional[float] = None
    distance: Optional[float] = None
    steps: Optional[int] = None
    heart_rate_avg: Optional[int] = None
    heart_rate_max: Optional[int] = None
    value_before: Optional[float] = None
    value_after: Optional[float] = None
    glucose_unit: Unit
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# =====================================================
# Readings: Meals
# =====================================================
class MealItemIn(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    calories: Optional[float] = Field(None, ge=0)
    carbs: Optional[float] = Field(None, ge=0)
    protein: Optional[float] = Field(None, ge=0)
    fat: Optional[float] = Field(None, ge=0)
    sugar: Optional[float] = Field(None, ge=0)
    model_config = ConfigDict(extra="forbid")


class MealCreate(BaseModel):
    meal_type: MealType
    occurred_at: Optional[datetime] = None
    items: List[MealItemIn] = Field(default_factory=list)

    # Derived from the items when omitted
    total_calories: Optional[float] = Field(None, ge=0)
    total_carbs: Optional[float] = Field(None, ge=0)
    total_protein: Optional[float] = Field(None, ge=0)
    total_fat: Optional[float] = Field(None, ge=0)
    total_sugar: Optional[float] = Field(None, ge=0)

    notes: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class MealUpdate(BaseModel):
    meal_type: Optional[MealType] = None
    occurred_at: Optional[datetime] = None
    items: Optional[List[MealItemIn]] = None
    total_calories: Optional[float] = Field(None, ge=0)
    total_carbs: Optional[float] = Field(None, ge=0)
    total_protein: Optional[float] = Field(None, ge=0)
    total_fat: Optional[float] = Field(None, ge=0)
    total_sugar: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class MealOut(BaseModel):
    id: UUID4
    user_id: UUID4
    meal_type: MealType
    occurred_at: datetime
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total_calories: Optional[float] = None
    total_carbs: Optional[float] = None
    total_protein: Optional[float] = None
    total_fat: Optional[float] = None
    total_sugar: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


ReadingOut = Union[GlucoseReadingOut, HbA1cReadingOut, ExerciseSessionOut, MealOut]


class ReadingPage(BaseModel):
    total: int
    readings: List[ReadingOut]


# =====================================================
# Target Ranges (Configuration)
# =====================================================
class TargetRange(BaseModel):
    """A [min, max] band for one metric family, expressed in `unit`."""

    family: MetricFamily
    min_value: float
    max_value: float
    unit: Unit
    is_default: bool = False


class TargetRangeIn(BaseModel):
    min_value: float = Field(..., ge=0)
    max_value: float = Field(..., ge=0)
    # Defaults to the family's canonical unit
    unit: Optional[Unit] = None
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_band(self):
        if self.min_value >= self.max_value:
            raise ValueError("min_value must be < max_value")
        return self


class TargetRangeResponse(TargetRange):
    user_id: UUID4
    updated_at: Optional[datetime] = None


# =====================================================
# Advisories
# =====================================================
class AdvisoryDraft(BaseModel):
    """Rule output, not yet persisted."""

    category: AdvisoryCategory
    priority: AdvisoryPriority
    title: str
    description: str
    suggested_action: Optional[str] = None
    trigger_type: TriggerType
    # Snapshot of the inputs that caused emission, for audit
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)


class AdvisoryCreate(BaseModel):
    """Manual creation (admin tooling / testing)."""

    category: AdvisoryCategory
    priority: AdvisoryPriority = AdvisoryPriority.MEDIUM
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    suggested_action: Optional[str] = None
    trigger_type: TriggerType = TriggerType.OTHER
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)
    valid_until: Optional[datetime] = None
    model_config = ConfigDict(extra="forbid")

    # Accept uppercase values like "HIGH" by normalizing before Enum conversion
    @field_validator("priority", "category", mode="before")
    def _normalize_case(cls, v):
        if isinstance(v, str):
            return v.lower()
        return v


class AdvisoryResponse(BaseModel):
    id: UUID4
    user_id: UUID4
    category: AdvisoryCategory
    priority: AdvisoryPriority
    title: str
    description: str
    suggested_action: Optional[str] = None
    trigger_type: TriggerType
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)
    trigger_time: datetime
    valid_until: Optional[datetime] = None
    is_read: bool
    is_dismissed: bool
    action_taken: bool
    action_details: Optional[Dict[str, Any]] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AdvisoryPage(BaseModel):
    total: int
    advisories: List[AdvisoryResponse]


class ActionRequest(BaseModel):
    action_details: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")


class ReadAllResponse(BaseModel):
    count: int


class RecordResponse(BaseModel):
    """A committed reading plus whatever advisories it produced (possibly none)."""

    reading: ReadingOut
    advisories_created: List[AdvisoryResponse] = Field(default_factory=list)


# =====================================================
# Statistics
# =====================================================
class GroupStats(BaseModel):
    count: int = 0
    sum: float = 0.0
    average: float = 0.0


class GlucoseImpact(BaseModel):
    """Mean blood sugar change (mg/dL) across sessions with a before/after pair."""

    average_change: float = 0.0
    readings: int = 0


class StatisticsSnapshot(BaseModel):
    family: MetricFamily
    unit: Unit
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    target_min: float
    target_max: float

    count: int = 0
    average: float = 0.0
    min: float = 0.0
    max: float = 0.0
    in_range: int = 0
    below_range: int = 0
    above_range: int = 0

    by_category: Dict[str, GroupStats] = Field(default_factory=dict)
    by_day: Dict[str, GroupStats] = Field(default_factory=dict)
    totals: Dict[str, float] = Field(default_factory=dict)
    glucose_impact: Optional[GlucoseImpact] = None


# =====================================================
# Health Check Models
# =====================================================
class DependencyStatus(BaseModel):
    status: str
    response_time_ms: Optional[int] = None
    error: Optional[str] = None


class HealthCheckResponse(BaseModel):
    service: str
    status: str
    dependencies: Dict[str, DependencyStatus] = Field(default_factory=dict)
