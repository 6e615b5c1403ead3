"""SQLAlchemy engine & session factory.

Single shared engine with connection pooling.  Export fetches run through
`readonly_session`, which marks the transaction READ ONLY on Postgres.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from export_builder.core.config import get_settings
from export_builder.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            echo=False,
        )
        logger.info("DB engine created  dialect=%s", _engine.dialect.name)
    return _engine


def get_session() -> Session:
    """Create a new ORM session (caller must close)."""
    engine = get_engine()
    factory = sessionmaker(bind=engine)
    return factory()


@contextmanager
def readonly_session(session_factory: Callable[[], Session] | None = None) -> Generator[Session, None, None]:
    """Yield a session whose transaction cannot write (Postgres-enforced).

    The session is closed (connection returned to the pool) on exit.
    """
    session = (session_factory or get_session)()
    try:
        if session.get_bind().dialect.name == "postgresql":
            session.execute(text("SET TRANSACTION READ ONLY"))
        yield session
    finally:
        session.close()
