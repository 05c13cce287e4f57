"""Database connection and session management."""

from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ehr_onboarding.config import get_settings
from ehr_onboarding.models import Base
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)


@lru_cache()
def get_engine() -> Engine:
    """Create the engine for the configured database."""
    settings = get_settings()
    if settings.database_url.startswith("sqlite"):
        # SQLite doesn't support pool settings
        return create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )
    return create_engine(
        settings.database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.debug,
    )


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Session factory bound to the configured engine."""
    return sessionmaker(
        bind=get_engine(),
        class_=Session,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def init_db() -> None:
    """Create all tables that do not exist yet."""
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("database_initialized", dialect=engine.dialect.name)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()
