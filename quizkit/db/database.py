from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from quizkit.db.models.base import Base

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let pysqlite honour SAVEPOINT.

    pysqlite defers BEGIN on its own, which breaks Session.begin_nested();
    hand transaction control back to SQLAlchemy instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine, applying the SQLite SAVEPOINT fix where needed."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        _enable_sqlite_savepoints(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to an engine (used by tools and tests)."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.log_level == "DEBUG")
    return _engine


def _get_session_factory() -> sessionmaker[Session]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory(get_engine())
    return _SessionLocal


def init_db(engine: Engine | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables initialized")


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = _get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    """Dependency-style session provider for callers that manage commits."""
    session = _get_session_factory()()
    try:
        yield session
    finally:
        session.close()
