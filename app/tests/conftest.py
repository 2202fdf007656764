"""
Shared fixtures.

Settings are read at import time, so the test environment is configured
before any app module is imported: DEBUG on, a strong secret and an
in-memory SQLite database shared through a single connection.
"""
import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-more-than-thirty-two-characters")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MAIL_TRANSPORT", "log")
os.environ.setdefault("USE_WORKER_QUEUE", "false")

import pytest


@pytest.fixture
def db():
    """Fresh schema per test."""
    from app.db.session import Base, SessionLocal, engine
    from app.db import models  # noqa - register models on Base.metadata

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


