"""
Database engine, session factory and schema bootstrap.

siso keeps users, chats and pending (unviewed) messages in one SQLite
database. Timestamps are integers in milliseconds since the Unix epoch.
"""

import logging
import time
from typing import Generator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from siso.config import settings

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("users", "chats", "messages")


def _connect_args(url: str) -> dict:
    # Sessions are used from FastAPI's threadpool and the client poller thread
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(settings.DATABASE_URL, connect_args=_connect_args(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def now_ms() -> int:
    return int(time.time() * 1000)


def init_db() -> None:
    """Create any missing tables. Runs at application startup."""
    from siso import models  # noqa: F401  (registers the tables on Base)

    Base.metadata.create_all(bind=engine)
    logger.info("Database ready", extra={"tables": sorted(Base.metadata.tables)})


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is closed after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    True when the database answers and every siso table exists.

    Used by the readiness probe, so failures are logged, not raised.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        existing = set(inspect(engine).get_table_names())
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False

    missing = [name for name in REQUIRED_TABLES if name not in existing]
    if missing:
        logger.error(f"Database schema not applied, missing tables: {missing}")
        return False
    return True
