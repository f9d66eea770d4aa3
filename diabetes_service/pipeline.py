# diabetes_service/pipeline.py

"""
Write path: validate -> persist reading -> normalize/evaluate -> persist advisories.
Read path:  range query -> normalize -> aggregate.

The reading commit and the advisory writes are separate
transactions. A failed reading write propagates to the caller; a failed
advisory write is logged and dropped, and never fails the request.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from . import rules, store
from .aggregator import aggregate, glucose_impact
from .models.schemas import (
    PERIOD_WINDOWS,
    AdvisoryResponse,
    MetricFamily,
    RecordResponse,
    StatisticsPeriod,
    StatisticsSnapshot,
)
from .normalizer import (
    check_session_window,
    exercise_glucose_pair,
    normalize,
    to_utc_naive,
    utc_now,
    validate_reading,
)
from .readings import NUTRIENTS, fill_exercise_duration, fill_meal_totals, view_for

logger = logging.getLogger("diabetes-service.pipeline")


def _prepare(reading) -> None:
    """Fill derived fields and check bounds. Raises InvalidReadingError; nothing is written."""
    reading.occurred_at = to_utc_naive(reading.occurred_at or utc_now())
    if reading.family == MetricFamily.EXERCISE:
        if reading.end_time is not None:
            reading.end_time = to_utc_naive(reading.end_time)
        # Shared by create and update, after both ends are UTC
        check_session_window(reading.occurred_at, reading.end_time)
        fill_exercise_duration(reading)
    elif reading.family == MetricFamily.MEAL:
        fill_meal_totals(reading)
    validate_reading(reading)


def _commit_reading(session: Session, reading) -> None:
    try:
        session.add(reading)
        session.commit()
        session.refresh(reading)
    except SQLAlchemyError:
        session.rollback()
        raise


def emit_advisories(session: Session, reading) -> List[AdvisoryResponse]:
    """
    Evaluate rules for a committed reading and append one advisory per draft.
    Dependency failures are swallowed with logging; each draft is saved on its own.
    """
    family = reading.family
    reading_id = reading.id
    user_id = reading.user_id
    created: List[AdvisoryResponse] = []

    try:
        target = store.get_target_range(session, user_id, family)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(
            "advisory emission skipped family=%s reading_id=%s: target range lookup failed: %s",
            family.value,
            reading_id,
            e,
        )
        return created

    drafts = rules.evaluate(reading, target)
    trigger_time = utc_now()
    for draft in drafts:
        try:
            advisory = store.save_advisory(session, user_id, draft, trigger_time)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(
                "advisory lost trigger=%s reading_id=%s: %s",
                draft.trigger_type.value,
                reading_id,
                e,
            )
            continue
        created.append(AdvisoryResponse.model_validate(advisory))

    if created:
        logger.info(
            "advisories created family=%s reading_id=%s count=%s",
            family.value,
            reading_id,
            len(created),
        )
    return created


def record_reading_and_evaluate(session: Session, reading) -> RecordResponse:
    """
    Persist `reading`, then run the advisory pipeline against it.
    Returns the committed reading with the advisories actually saved (possibly none).
    """
    _prepare(reading)
    _commit_reading(session, reading)
    # Serialize before emission so a rollback there cannot touch the response
    out = view_for(reading.family).out_schema.model_validate(reading)
    advisories = emit_advisories(session, reading)
    return RecordResponse(reading=out, advisories_created=advisories)


def update_reading_and_evaluate(
    session: Session, reading, changes: Dict[str, Any], reevaluate: bool
) -> RecordResponse:
    """Apply a partial update; re-run the rules only when `reevaluate` is set."""
    for field, value in changes.items():
        setattr(reading, field, value)

    if reading.family == MetricFamily.MEAL and "items" in changes:
        # New composition: re-derive every total the client did not send
        for name in NUTRIENTS:
            if f"total_{name}" not in changes:
                setattr(reading, f"total_{name}", None)
    if reading.family == MetricFamily.EXERCISE and "end_time" in changes:
        if "duration_minutes" not in changes:
            reading.duration_minutes = None

    reading.updated_at = utc_now()
    _prepare(reading)
    _commit_reading(session, reading)
    out = view_for(reading.family).out_schema.model_validate(reading)
    advisories = emit_advisories(session, reading) if reevaluate else []
    return RecordResponse(reading=out, advisories_created=advisories)


def get_statistics(
    session: Session,
    user_id: uuid.UUID,
    family: MetricFamily,
    period: StatisticsPeriod,
    now: Optional[datetime] = None,
) -> StatisticsSnapshot:
    """Snapshot over [now - period, now], recomputed on every call."""
    end = to_utc_naive(now) if now else utc_now()
    start = end - PERIOD_WINDOWS[period]

    target = store.get_target_range(session, user_id, family)
    readings = store.find_readings_in_range(session, user_id, family, start, end)
    view = view_for(family)

    snapshot = aggregate(
        readings,
        target,
        value_of=normalize,
        category_of=view.category_of,
        totals_of=view.totals_of,
        window=(start, end),
    )
    if family == MetricFamily.EXERCISE:
        snapshot.glucose_impact = glucose_impact(exercise_glucose_pair(s) for s in readings)
    return snapshot
