# diabetes_service/store.py

"""
Persistence collaborators used by the pipeline: the Reading Store range
query, target range lookup (with defaults), and the Advisory Sink write.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from . import config
from .models.models import Advisory, TargetRangeSetting
from .models.schemas import (
    PRIORITY_RANK,
    AdvisoryDraft,
    MetricFamily,
    TargetRange,
    TargetRangeIn,
)
from .normalizer import CANONICAL_UNITS, convert, utc_now
from .readings import view_for


# =====================================================
# Reading Store
# =====================================================
def find_readings_in_range(
    session: Session, user_id: uuid.UUID, family: MetricFamily, start: datetime, end: datetime
) -> List:
    """Readings of one family with start <= occurred_at <= end, oldest first."""
    model = view_for(family).model
    stmt = (
        select(model)
        .where(model.user_id == user_id)
        .where(model.occurred_at >= start)
        .where(model.occurred_at <= end)
        .order_by(model.occurred_at.asc())
    )
    return list(session.exec(stmt).all())


def get_reading(session: Session, user_id: uuid.UUID, family: MetricFamily, reading_id: uuid.UUID):
    """The reading if it exists and belongs to `user_id`, else None."""
    reading = session.get(view_for(family).model, reading_id)
    if reading is None or reading.user_id != user_id:
        return None
    return reading


# =====================================================
# Target Ranges
# =====================================================
def default_target_range(family: MetricFamily) -> TargetRange:
    family = MetricFamily(family)
    low, high = config.DEFAULT_TARGET_RANGES[family.value]
    return TargetRange(
        family=family,
        min_value=low,
        max_value=high,
        unit=CANONICAL_UNITS[family],
        is_default=True,
    )


def get_target_setting(
    session: Session, user_id: uuid.UUID, family: MetricFamily
) -> Optional[TargetRangeSetting]:
    return session.exec(
        select(TargetRangeSetting).where(
            TargetRangeSetting.user_id == user_id,
            TargetRangeSetting.family == family,
        )
    ).first()


def get_target_range(session: Session, user_id: uuid.UUID, family: MetricFamily) -> TargetRange:
    """The user's band for `family` in canonical units; defaults apply when absent."""
    setting = get_target_setting(session, user_id, family)
    if setting is None:
        return default_target_range(family)
    return TargetRange(
        family=setting.family,
        min_value=convert(setting.min_value, setting.family, setting.unit),
        max_value=convert(setting.max_value, setting.family, setting.unit),
        unit=CANONICAL_UNITS[setting.family],
    )


def upsert_target_range(
    session: Session, user_id: uuid.UUID, family: MetricFamily, payload: TargetRangeIn
) -> TargetRangeSetting:
    unit = payload.unit or CANONICAL_UNITS[family]
    # Raises UnsupportedUnitError for a unit the family does not know
    convert(payload.min_value, family, unit)

    existing = get_target_setting(session, user_id, family)
    if existing:
        existing.min_value = payload.min_value
        existing.max_value = payload.max_value
        existing.unit = unit
        existing.updated_at = utc_now()
        session.add(existing)
        session.commit()
        session.refresh(existing)
        return existing

    setting = TargetRangeSetting(
        user_id=user_id,
        family=family,
        min_value=payload.min_value,
        max_value=payload.max_value,
        unit=unit,
    )
    session.add(setting)
    session.commit()
    session.refresh(setting)
    return setting


# =====================================================
# Advisory Sink
# =====================================================
def save_advisory(
    session: Session,
    user_id: uuid.UUID,
    draft: AdvisoryDraft,
    trigger_time: Optional[datetime] = None,
    valid_until: Optional[datetime] = None,
) -> Advisory:
    """Append one advisory in its initial unread/undismissed state. No dedup."""
    advisory = Advisory(
        user_id=user_id,
        category=draft.category,
        priority=draft.priority,
        priority_rank=PRIORITY_RANK[draft.priority],
        title=draft.title,
        description=draft.description,
        suggested_action=draft.suggested_action,
        trigger_type=draft.trigger_type,
        trigger_payload=draft.trigger_payload,
        trigger_time=trigger_time or utc_now(),
        valid_until=valid_until,
        is_read=False,
        is_dismissed=False,
        action_taken=False,
    )
    session.add(advisory)
    session.commit()
    session.refresh(advisory)
    return advisory
