from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from atlas.config import get_settings
from atlas.errors import translate_integrity_error
from atlas.models import Base

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str) -> Engine:
    """Create an engine; SQLite connections get foreign key enforcement."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url == "sqlite://":
        # one shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(db_url: str | None = None) -> None:
    global _engine, _SessionLocal
    settings = get_settings()
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_url is None:
            settings.ensure_directories()
            db_url = settings.database_url
        _engine = create_db_engine(db_url)
        Base.metadata.create_all(_engine)
        _SessionLocal = make_session_factory(_engine)
    log.info("Database initialised at %s", _engine.url.render_as_string(hide_password=True))


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()


@contextmanager
def unit_of_work(session: Session, entity: str = "record", key: Any = None) -> Generator[Session, None, None]:
    """All-or-nothing boundary around a group of statements.

    Everything executed inside the block commits together on normal exit.
    Any exception rolls the whole block back; integrity errors are re-raised
    as ``ConflictError`` / ``ReferentialError`` for *entity* and *key*.
    """
    if not session.in_transaction():
        session.begin()
    try:
        yield session
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        log.warning("Rolled back %s %r: %s", entity, key, exc.orig)
        raise translate_integrity_error(exc, entity, key) from exc
    except Exception:
        session.rollback()
        log.warning("Rolled back %s %r", entity, key)
        raise
