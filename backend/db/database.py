"""
Engine and session setup for the trip store.

With USE_DATABASE=true trips, rosters and passenger statuses go through
SqlTripStore; otherwise (or when the connection check fails) the API keeps
them in InMemoryTripStore.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from config import config
from .models import Base

logger = logging.getLogger(__name__)

USE_DATABASE = config.USE_DATABASE
DATABASE_URL = config.DATABASE_URL

engine: Engine | None = None
SessionLocal: Optional[sessionmaker] = None


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": config.SQLALCHEMY_ECHO, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # Sync endpoints run in the threadpool
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=5, max_overflow=10, pool_recycle=3600)
    return options


def _ping(target: Engine) -> None:
    with target.connect() as conn:
        conn.execute(text("SELECT 1"))


def init_engine(url: Optional[str] = None, enabled: Optional[bool] = None) -> Engine | None:
    """
    Connect, create the trip tables and bind SessionLocal.

    Returns None (in-memory mode) when the database is disabled or the
    connection check fails.
    """
    global engine, SessionLocal

    url = url or DATABASE_URL
    enabled = USE_DATABASE if enabled is None else enabled
    if not enabled:
        logger.info("[DB] Disabled (USE_DATABASE=false), trips stay in memory")
        return None

    try:
        candidate = create_engine(url, **_engine_options(url))
        _ping(candidate)
        Base.metadata.create_all(bind=candidate)
    except Exception as e:
        logger.error(f"[DB] Cannot use {url.split('@')[-1]}: {e}")
        logger.warning("[DB] Falling back to the in-memory trip store")
        engine = None
        SessionLocal = None
        return None

    engine = candidate
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info(f"[DB] Connected: {url.split('@')[-1]} ({len(Base.metadata.tables)} tables)")
    return engine


def is_database_available() -> bool:
    """True when SessionLocal is bound and the engine still answers."""
    if engine is None or SessionLocal is None:
        return False
    try:
        _ping(engine)
        return True
    except Exception as e:
        logger.warning(f"[DB] Connection check failed: {e}")
        return False


def create_tables() -> None:
    if engine is not None:
        Base.metadata.create_all(bind=engine)
        logger.info("[DB] Trip tables created")


def drop_tables() -> None:
    """Drop every trip table, including passenger statuses and audit history."""
    if engine is not None:
        Base.metadata.drop_all(bind=engine)
        logger.info("[DB] Trip tables dropped")


init_engine()
