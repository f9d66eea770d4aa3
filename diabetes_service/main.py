"""Diabetes Service

Records glucose, HbA1c, exercise and meal readings, evaluates them against
the user's target ranges to emit advisories, and serves windowed statistics.
Includes health checks, a best-effort Redis "latest" cache, and an optional
user-service existence check.
"""

# =====================================================
# Standard Library Imports
# =====================================================
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

# =====================================================
# Third-Party Imports
# =====================================================
import httpx
import psycopg2
import redis
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import UUID4
from redis.exceptions import RedisError
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.middleware.base import BaseHTTPMiddleware

# =====================================================
# Local Imports
# =====================================================
from . import config, store
from .db import close_db_connection, engine, get_session, init_db
from .models.models import Advisory, ExerciseSession, GlucoseReading, HbA1cReading, Meal
from .models.schemas import (
    ActionRequest,
    AdvisoryCategory,
    AdvisoryCreate,
    AdvisoryDraft,
    AdvisoryPage,
    AdvisoryPriority,
    AdvisoryResponse,
    DependencyStatus,
    ExerciseSessionCreate,
    ExerciseSessionUpdate,
    GlucoseReadingCreate,
    GlucoseReadingUpdate,
    HbA1cReadingCreate,
    HbA1cReadingUpdate,
    HealthCheckResponse,
    MealCreate,
    MealUpdate,
    MetricFamily,
    ReadAllResponse,
    ReadingOut,
    ReadingPage,
    RecordResponse,
    StatisticsPeriod,
    StatisticsSnapshot,
    TargetRangeIn,
    TargetRangeResponse,
)
from .normalizer import InvalidReadingError, to_utc_naive, utc_now
from .pipeline import get_statistics, record_reading_and_evaluate, update_reading_and_evaluate
from .readings import view_for

# =====================================================
# Configuration & Middleware
# =====================================================
logger = logging.getLogger("diabetes-service")
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Service lifespan for startup/shutdown hooks."""
    try:
        init_db()
        logger.info("Diabetes DB initialized successfully.")
    except (SQLAlchemyError, psycopg2.Error) as e:
        logger.error("Diabetes DB initialization failed: %s", e)
    yield
    close_db_connection()


app = FastAPI(title="Diabetes Service", lifespan=lifespan, root_path=config.ROOT_PATH)


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_ts = time.time()
        logger.info("req_id=%s start method=%s path=%s", req_id, request.method, request.url.path)
        response = await call_next(request)
        duration_ms = int((time.time() - start_ts) * 1000)
        response.headers["X-Request-ID"] = req_id
        response.headers["X-Response-Time-ms"] = str(duration_ms)
        logger.info(
            "req_id=%s end status=%s path=%s duration_ms=%s",
            req_id,
            response.status_code,
            request.url.path,
            duration_ms,
        )
        return response


app.add_middleware(LoggingMiddleware)

# =====================================================
# Dependencies (Redis, user-service)
# =====================================================
redis_client = redis.Redis(
    host=config.REDIS_HOST,
    port=config.REDIS_PORT,
    decode_responses=True,
)


def _http_client() -> httpx.Client:
    return httpx.Client(timeout=2.0)


def _ensure_user_exists(user_id: UUID4) -> None:
    """Ensure the user exists via user-service, when one is configured.

    Raises 404 if not found, 502 if user-service is unavailable.
    """
    if not config.USER_SERVICE_URL:
        return
    url = f"{config.USER_SERVICE_URL.rstrip('/')}/{user_id}"
    try:
        with _http_client() as client:
            resp = client.get(url)
    except httpx.RequestError as e:
        raise HTTPException(status_code=502, detail=f"User service unavailable: {e}")
    if resp.status_code == 200:
        return
    if resp.status_code == 404:
        raise HTTPException(status_code=404, detail="User not found")
    raise HTTPException(status_code=502, detail="User service error")


def _require_admin(request: Request):
    if not config.ADMIN_TOKEN:
        return True  # If not configured, do not block
    if request.headers.get("X-Admin-Token") != config.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Forbidden")
    return True


def _check_range(start_time: Optional[datetime], end_time: Optional[datetime]):
    st = to_utc_naive(start_time) if start_time else None
    et = to_utc_naive(end_time) if end_time else None
    if st and et and et < st:
        raise HTTPException(status_code=400, detail="end_time must be >= start_time")
    return st, et


@app.get("/health", response_model=HealthCheckResponse)
def health():
    """Health check for the database, Redis, and (if configured) user-service."""
    dependencies = {}
    service_name = "diabetes-service"

    # Check database
    start = time.time()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        dependencies["database"] = DependencyStatus(
            status="healthy", response_time_ms=int((time.time() - start) * 1000)
        )
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        dependencies["database"] = DependencyStatus(status="unhealthy", error=str(e))

    # Check Redis
    start = time.time()
    try:
        status = "healthy" if redis_client.ping() else "unhealthy"
        dependencies["redis"] = DependencyStatus(
            status=status, response_time_ms=int((time.time() - start) * 1000)
        )
    except RedisError as e:
        logger.error("Redis health check failed: %s", e)
        dependencies["redis"] = DependencyStatus(status="unhealthy", error=str(e))

    # Check user service
    if config.USER_SERVICE_URL:
        start = time.time()
        try:
            with _http_client() as client:
                resp = client.get(f"{config.USER_SERVICE_URL.rstrip('/')}/health")
            status = "healthy" if resp.status_code == 200 else "unhealthy"
            dependencies["user-service"] = DependencyStatus(
                status=status, response_time_ms=int((time.time() - start) * 1000)
            )
        except httpx.HTTPError as e:
            logger.error("User-service health check failed: %s", e)
            dependencies["user-service"] = DependencyStatus(status="unhealthy", error=str(e))

    # Aggregate status
    overall_status = (
        "healthy" if all(dep.status == "healthy" for dep in dependencies.values()) else "unhealthy"
    )
    if overall_status == "unhealthy":
        raise HTTPException(
            status_code=503,
            detail=HealthCheckResponse(
                service=service_name, status=overall_status, dependencies=dependencies
            ).model_dump(),
        )

    return HealthCheckResponse(
        service=service_name, status=overall_status, dependencies=dependencies
    )


# =====================================================
# Latest-reading cache (best-effort)
# =====================================================
def _cache_key(user_id: UUID4, family: MetricFamily) -> str:
    return f"latest:{user_id}:{family.value}"


def _invalidate_latest(user_id: UUID4, family: MetricFamily) -> None:
    try:
        redis_client.delete(_cache_key(user_id, family))
    except RedisError:
        logger.debug("Redis error deleting latest cache", exc_info=True)


# =====================================================
# Readings: Recording
# =====================================================
def _record(user_id: UUID4, reading, session: Session) -> RecordResponse:
    """
    1. Validate and persist the reading (failure -> error response, nothing stored)
    2. Evaluate rules and save advisories (failure -> logged, empty list)
    """
    _ensure_user_exists(user_id)
    try:
        result = record_reading_and_evaluate(session, reading)
    except InvalidReadingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SQLAlchemyError as e:
        raise HTTPException(status_code=503, detail=f"Database Write Failed: {str(e)}") from e

    # The new row may not be the newest by occurred_at; let /latest rebuild it
    _invalidate_latest(user_id, reading.family)
    return result


@app.post("/{user_id}/readings/glucose", response_model=RecordResponse, status_code=201)
def record_glucose(
    user_id: UUID4, payload: GlucoseReadingCreate, session: Session = Depends(get_session)
):
    reading = GlucoseReading(user_id=user_id, **payload.model_dump())
    return _record(user_id, reading, session)


@app.post("/{user_id}/readings/hba1c", response_model=RecordResponse, status_code=201)
def record_hba1c(
    user_id: UUID4, payload: HbA1cReadingCreate, session: Session = Depends(get_session)
):
    reading = HbA1cReading(user_id=user_id, **payload.model_dump())
    return _record(user_id, reading, session)


@app.post("/{user_id}/readings/exercise", response_model=RecordResponse, status_code=201)
def record_exercise(
    user_id: UUID4, payload: ExerciseSessionCreate, session: Session = Depends(get_session)
):
    reading = ExerciseSession(user_id=user_id, **payload.model_dump())
    return _record(user_id, reading, session)


@app.post("/{user_id}/readings/meal", response_model=RecordResponse, status_code=201)
def record_meal(user_id: UUID4, payload: MealCreate, session: Session = Depends(get_session)):
    # model_dump turns the items into plain dicts for the JSON column
    reading = Meal(user_id=user_id, **payload.model_dump())
    return _record(user_id, reading, session)


# =====================================================
# Readings: Updates
# =====================================================
def _update(
    user_id: UUID4,
    family: MetricFamily,
    reading_id: uuid.UUID,
    changes: dict,
    reevaluate: bool,
    session: Session,
) -> RecordResponse:
    reading = store.get_reading(session, user_id, family, reading_id)
    if not reading:
        raise HTTPException(status_code=404, detail="Reading not found")
    try:
        result = update_reading_and_evaluate(session, reading, changes, reevaluate)
    except InvalidReadingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SQLAlchemyError as e:
        raise HTTPException(status_code=503, detail=f"Database Write Failed: {str(e)}") from e

    _invalidate_latest(user_id, family)
    return result


@app.patch("/{user_id}/readings/glucose/{reading_id}", response_model=RecordResponse)
def update_glucose(
    user_id: UUID4,
    reading_id: uuid.UUID,
    payload: GlucoseReadingUpdate,
    session: Session = Depends(get_session),
):
    changes = payload.model_dump(exclude_none=True)
    return _update(user_id, MetricFamily.GLUCOSE, reading_id, changes, True, session)


@app.patch("/{user_id}/readings/hba1c/{reading_id}", response_model=RecordResponse)
def update_hba1c(
    user_id: UUID4,
    reading_id: uuid.UUID,
    payload: HbA1cReadingUpdate,
    session: Session = Depends(get_session),
):
    changes = payload.model_dump(exclude_none=True)
    return _update(user_id, MetricFamily.HBA1C, reading_id, changes, False, session)


@app.patch("/{user_id}/readings/exercise/{reading_id}", response_model=RecordResponse)
def update_exercise(
    user_id: UUID4,
    reading_id: uuid.UUID,
    payload: ExerciseSessionUpdate,
    session: Session = Depends(get_session),
):
    changes = payload.model_dump(exclude_none=True)
    reevaluate = bool({"value_before", "value_after", "glucose_unit"} & changes.keys())
    return _update(user_id, MetricFamily.EXERCISE, reading_id, changes, reevaluate, session)


@app.patch("/{user_id}/readings/meal/{reading_id}", response_model=RecordResponse)
def update_meal(
    user_id: UUID4,
    reading_id: uuid.UUID,
    payload: MealUpdate,
    session: Session = Depends(get_session),
):
    changes = payload.model_dump(exclude_none=True)
    return _update(user_id, MetricFamily.MEAL, reading_id, changes, "items" in changes, session)


# =====================================================
# Readings: Queries
# =====================================================
@app.get("/{user_id}/readings/{family}", response_model=ReadingPage)
def list_readings(
    user_id: UUID4,
    family: MetricFamily,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    category: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
):
    """Readings of one family, newest first, with the unpaginated total."""
    _ensure_user_exists(user_id)
    st, et = _check_range(start_time, end_time)

    view = view_for(family)
    model = view.model
    conditions = [model.user_id == user_id]
    if st:
        conditions.append(model.occurred_at >= st)
    if et:
        conditions.append(model.occurred_at <= et)
    if category:
        try:
            conditions.append(getattr(model, view.category_field) == view.category_value(category))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unsupported category: {category}")

    total = session.exec(select(func.count()).select_from(model).where(*conditions)).one()
    rows = session.exec(
        select(model)
        .where(*conditions)
        .order_by(model.occurred_at.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return ReadingPage(total=total, readings=[view.out_schema.model_validate(r) for r in rows])


@app.get("/{user_id}/readings/{family}/latest", response_model=ReadingOut)
def get_latest_reading(
    user_id: UUID4, family: MetricFamily, session: Session = Depends(get_session)
):
    """
    Return the most recent reading of a family.
    1) Try Redis cache
    2) Fallback to DB (ORDER BY occurred_at DESC LIMIT 1)
    """
    _ensure_user_exists(user_id)
    view = view_for(family)
    cache_key = _cache_key(user_id, family)

    try:
        cached = redis_client.get(cache_key)
        if cached:
            return view.out_schema.model_validate_json(cached)
    except RedisError as e:
        logger.warning("Redis get latest failed for user %s: %s", user_id, e)

    model = view.model
    result = session.exec(
        select(model)
        .where(model.user_id == user_id)
        .order_by(model.occurred_at.desc())
        .limit(1)
    ).first()
    if not result:
        raise HTTPException(status_code=404, detail=f"No {family.value} readings found for user")

    out = view.out_schema.model_validate(result)
    try:
        redis_client.set(cache_key, out.model_dump_json())
    except RedisError:
        # best-effort cache refresh
        logger.debug("Redis error refreshing latest cache", exc_info=True)
    return out


@app.get("/{user_id}/readings/{family}/{reading_id}", response_model=ReadingOut)
def get_reading(
    user_id: UUID4,
    family: MetricFamily,
    reading_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    reading = store.get_reading(session, user_id, family, reading_id)
    if not reading:
        raise HTTPException(status_code=404, detail="Reading not found")
    return view_for(family).out_schema.model_validate(reading)


@app.delete("/{user_id}/readings/{family}/{reading_id}", status_code=204)
def delete_reading(
    user_id: UUID4,
    family: MetricFamily,
    reading_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    """Delete one reading. Advisories it produced are kept."""
    reading = store.get_reading(session, user_id, family, reading_id)
    if not reading:
        raise HTTPException(status_code=404, detail="Reading not found")

    try:
        session.delete(reading)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise HTTPException(status_code=503, detail=f"Deletion failed: {e}")

    _invalidate_latest(user_id, family)
    return None


# =====================================================
# Statistics
# =====================================================
@app.get("/{user_id}/statistics/{family}", response_model=StatisticsSnapshot)
def statistics(
    user_id: UUID4,
    family: MetricFamily,
    period: StatisticsPeriod = StatisticsPeriod.LAST_7_DAYS,
    session: Session = Depends(get_session),
):
    """Windowed summary ending now; recomputed on every call, never cached."""
    _ensure_user_exists(user_id)
    try:
        return get_statistics(session, user_id, family, period)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# =====================================================
# Target Ranges
# =====================================================
@app.get("/{user_id}/target-ranges/{family}", response_model=TargetRangeResponse)
def get_target_range(
    user_id: UUID4, family: MetricFamily, session: Session = Depends(get_session)
):
    setting = store.get_target_setting(session, user_id, family)
    if setting is None:
        default = store.default_target_range(family)
        return TargetRangeResponse(user_id=user_id, **default.model_dump())
    return TargetRangeResponse(
        user_id=user_id,
        family=setting.family,
        min_value=setting.min_value,
        max_value=setting.max_value,
        unit=setting.unit,
        updated_at=setting.updated_at,
    )


@app.put("/{user_id}/target-ranges/{family}", response_model=TargetRangeResponse)
def put_target_range(
    user_id: UUID4,
    family: MetricFamily,
    payload: TargetRangeIn,
    session: Session = Depends(get_session),
):
    """Create or update the user's band for one family (upsert)."""
    _ensure_user_exists(user_id)
    try:
        setting = store.upsert_target_range(session, user_id, family, payload)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SQLAlchemyError as e:
        session.rollback()
        raise HTTPException(status_code=503, detail=f"Database Write Failed: {str(e)}") from e

    logger.info(
        "target range set user=%s family=%s min=%s max=%s unit=%s",
        user_id,
        family.value,
        setting.min_value,
        setting.max_value,
        setting.unit.value,
    )
    return TargetRangeResponse(
        user_id=user_id,
        family=setting.family,
        min_value=setting.min_value,
        max_value=setting.max_value,
        unit=setting.unit,
        updated_at=setting.updated_at,
    )


# =====================================================
# Advisories
# =====================================================
def _get_advisory(session: Session, user_id: UUID4, advisory_id: uuid.UUID) -> Advisory:
    advisory = session.get(Advisory, advisory_id)
    if not advisory or advisory.user_id != user_id:
        raise HTTPException(status_code=404, detail="Advisory not found")
    return advisory


def _save(session: Session, advisory: Advisory) -> AdvisoryResponse:
    advisory.updated_at = utc_now()
    session.add(advisory)
    session.commit()
    session.refresh(advisory)
    return AdvisoryResponse.model_validate(advisory)


@app.get("/{user_id}/advisories", response_model=AdvisoryPage)
def list_advisories(
    user_id: UUID4,
    category: Optional[AdvisoryCategory] = None,
    priority: Optional[AdvisoryPriority] = None,
    is_read: Optional[bool] = None,
    is_dismissed: Optional[bool] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
):
    """Urgent first, then newest trigger first."""
    st, et = _check_range(start_time, end_time)

    conditions = [Advisory.user_id == user_id]
    if category:
        conditions.append(Advisory.category == category)
    if priority:
        conditions.append(Advisory.priority == priority)
    if is_read is not None:
        conditions.append(Advisory.is_read == is_read)
    if is_dismissed is not None:
        conditions.append(Advisory.is_dismissed == is_dismissed)
    if st:
        conditions.append(Advisory.trigger_time >= st)
    if et:
        conditions.append(Advisory.trigger_time <= et)

    total = session.exec(select(func.count()).select_from(Advisory).where(*conditions)).one()
    rows = session.exec(
        select(Advisory)
        .where(*conditions)
        .order_by(Advisory.priority_rank.desc(), Advisory.trigger_time.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return AdvisoryPage(total=total, advisories=[AdvisoryResponse.model_validate(a) for a in rows])


@app.post("/{user_id}/advisories/read-all", response_model=ReadAllResponse)
def mark_all_read(
    user_id: UUID4,
    category: Optional[AdvisoryCategory] = None,
    session: Session = Depends(get_session),
):
    stmt = select(Advisory).where(Advisory.user_id == user_id, Advisory.is_read == False)  # noqa: E712
    if category:
        stmt = stmt.where(Advisory.category == category)
    unread: List[Advisory] = list(session.exec(stmt).all())

    now = utc_now()
    for advisory in unread:
        advisory.is_read = True
        advisory.updated_at = now
        session.add(advisory)
    session.commit()
    return ReadAllResponse(count=len(unread))


@app.post("/{user_id}/advisories", response_model=AdvisoryResponse, status_code=201)
def create_advisory(
    user_id: UUID4, payload: AdvisoryCreate, session: Session = Depends(get_session)
):
    """Manual creation; bypasses the rules."""
    _ensure_user_exists(user_id)
    draft = AdvisoryDraft(**payload.model_dump(exclude={"valid_until"}))
    try:
        advisory = store.save_advisory(
            session,
            user_id,
            draft,
            valid_until=to_utc_naive(payload.valid_until) if payload.valid_until else None,
        )
    except SQLAlchemyError as e:
        session.rollback()
        raise HTTPException(status_code=503, detail=f"Database Write Failed: {str(e)}") from e
    return AdvisoryResponse.model_validate(advisory)


@app.get("/{user_id}/advisories/{advisory_id}", response_model=AdvisoryResponse)
def get_advisory(
    user_id: UUID4, advisory_id: uuid.UUID, session: Session = Depends(get_session)
):
    return AdvisoryResponse.model_validate(_get_advisory(session, user_id, advisory_id))


@app.post("/{user_id}/advisories/{advisory_id}/read", response_model=AdvisoryResponse)
def mark_read(user_id: UUID4, advisory_id: uuid.UUID, session: Session = Depends(get_session)):
    advisory = _get_advisory(session, user_id, advisory_id)
    advisory.is_read = True
    return _save(session, advisory)


@app.post("/{user_id}/advisories/{advisory_id}/dismiss", response_model=AdvisoryResponse)
def dismiss(user_id: UUID4, advisory_id: uuid.UUID, session: Session = Depends(get_session)):
    advisory = _get_advisory(session, user_id, advisory_id)
    advisory.is_dismissed = True
    return _save(session, advisory)


@app.post("/{user_id}/advisories/{advisory_id}/action", response_model=AdvisoryResponse)
def record_action(
    user_id: UUID4,
    advisory_id: uuid.UUID,
    payload: ActionRequest,
    session: Session = Depends(get_session),
):
    """Record that the user acted on an advisory; acting implies having read it."""
    advisory = _get_advisory(session, user_id, advisory_id)
    advisory.action_taken = True
    advisory.action_details = payload.action_details
    advisory.is_read = True
    return _save(session, advisory)


@app.delete("/{user_id}/advisories/{advisory_id}", status_code=204)
def delete_advisory(
    user_id: UUID4, advisory_id: uuid.UUID, session: Session = Depends(get_session)
):
    advisory = _get_advisory(session, user_id, advisory_id)
    session.delete(advisory)
    session.commit()
    return None


# =====================================================
# Admin
# =====================================================
@app.delete("/advisories/{advisory_id}", status_code=204)
def admin_delete_advisory(
    advisory_id: uuid.UUID, request: Request, session: Session = Depends(get_session)
):
    _require_admin(request)
    advisory = session.get(Advisory, advisory_id)
    if not advisory:
        raise HTTPException(status_code=404, detail="Advisory not found")
    session.delete(advisory)
    session.commit()
    logger.info("admin deleted advisory %s", advisory_id)
    return None
