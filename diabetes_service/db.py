# diabetes_service/db.py

import os
from typing import Iterator

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Connection string: DATABASE_URL, else PG_DSN. There is no default database.
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("PG_DSN")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL (or PG_DSN) must point at the diabetes database")


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Local runs and tests: one shared connection, usable from the threadpool
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    # Postgres via psycopg2; re-check pooled connections after a server restart
    return create_engine(url, pool_pre_ping=True)


engine = _build_engine(DATABASE_URL)


def init_db() -> None:
    """
    Create the reading, target range and advisory tables if missing.
    `diabetes_service.models.models` must be imported first so the tables are registered.
    """
    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """Request-scoped session for `Depends(get_session)`."""
    with Session(engine) as session:
        yield session


def close_db_connection() -> None:
    engine.dispose()
