"""
Nodebench Hub - Database Utilities
==================================

Engine and session management plus the user bootstrap helper.

Usage:
    from hub.core.db import get_session, init_db

    init_db()
    with get_session() as session:
        user = ensure_user(session, "user-1")
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base, User

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def _engine_options(url: str, echo: bool) -> dict[str, Any]:
    if not url.startswith("sqlite"):
        return {"echo": echo, "pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}

    options: dict[str, Any] = {"echo": echo, "connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
        # Every connection must see the same in-memory database
        options["poolclass"] = StaticPool
    return options


def _build_engine(url: str, echo: bool = False) -> Engine:
    engine = create_engine(url, **_engine_options(url, echo))

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _foreign_keys_on(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_engine(url: str | None = None, echo: bool = False) -> Engine:
    """Return the process-wide engine, creating it from ``DATABASE_URL`` on first use."""
    global _engine
    if _engine is None:
        if url is None:
            from agentkit.config import get_settings

            url = get_settings().DATABASE_URL
        _engine = _build_engine(url, echo=echo)
    return _engine


def reset_engine() -> None:
    """Dispose of the cached engine so the next call picks up new settings."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_session() -> Iterator[Session]:
    """Session scope: commit on success, roll back on error, always close."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)

    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(engine or get_engine())


def ensure_user(session: Session, user_id: str, name: str | None = None, email: str | None = None) -> User:
    """Get the user row for an authenticated id, creating it on first sight."""
    user = session.get(User, user_id)
    if user is None:
        user = User(id=user_id, name=name, email=email)
        session.add(user)
        session.flush()
    return user


def create_test_engine(echo: bool = False) -> Engine:
    """In-memory SQLite engine with the schema already created."""
    engine = _build_engine("sqlite:///:memory:", echo=echo)
    Base.metadata.create_all(engine)
    return engine
