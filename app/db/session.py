"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from contextlib import contextmanager

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_kwargs(url: str) -> dict:
    """Pool settings for the configured backend."""
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Verify the schema on startup.

    Schema is managed by Alembic migrations (`alembic upgrade head`). With
    DEBUG=true missing tables are created directly from the models so a local
    SQLite database works without running migrations.
    """
    from sqlalchemy import inspect

    from app.db import models  # noqa - register models on Base.metadata

    existing_tables = set(inspect(engine).get_table_names())
    required_tables = {"rfq_requests", "rfq_suppliers", "supplier_quote_requests"}

    missing = sorted(required_tables - existing_tables)
    if not missing:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")
        return

    if settings.DEBUG:
        logger.warning(f"Missing tables {missing}; DEBUG=true, creating from models")
        Base.metadata.create_all(bind=engine)
    else:
        logger.error(f"Missing tables {missing}; run `alembic upgrade head` before serving requests")
