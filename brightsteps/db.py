import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from brightsteps.config import get_settings
from brightsteps.errors import StorageFailure

logger = logging.getLogger(__name__)

_engines: dict[str, Engine] = {}
_engines_lock = threading.Lock()
_initialized: set[str] = set()


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute("PRAGMA synchronous = NORMAL")
    cursor.close()


def _create_engine(url: str, busy_timeout: float) -> Engine:
    parsed = make_url(url)
    connect_args = {}
    if parsed.get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": busy_timeout}
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=False, connect_args=connect_args)
    if parsed.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def get_engine(database_url: str | None = None) -> Engine:
    """Return the process-wide engine for a URL, creating it on first use."""
    settings = get_settings()
    url = database_url or settings.database_url
    with _engines_lock:
        engine = _engines.get(url)
        if engine is None:
            engine = _create_engine(url, settings.sqlite_busy_timeout_seconds)
            _engines[url] = engine
        return engine


def get_session_factory(database_url: str | None = None) -> sessionmaker[Session]:
    engine = get_engine(database_url)
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(database_url: str | None = None) -> None:
    """Create all tables. Safe to call repeatedly; only the first call per URL does work."""
    import brightsteps.models.generation  # noqa: F401
    import brightsteps.models.pack  # noqa: F401

    url = database_url or get_settings().database_url
    with _engines_lock:
        if url in _initialized:
            return
    engine = get_engine(url)
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StorageFailure(f"Failed to initialize database: {e}") from e
    with _engines_lock:
        _initialized.add(url)
    logger.info("Database ready: %s", engine.url.render_as_string(hide_password=True))


def dispose_engines() -> None:
    """Dispose every cached engine and forget initialization state."""
    with _engines_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()
        _initialized.clear()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
    session: Session | None = None,
) -> Iterator[Session]:
    """Unit of work.

    With an outer ``session`` the caller owns commit/rollback and this is a
    pass-through. Otherwise a fresh session is committed on success and rolled
    back on error; database errors surface as StorageFailure.
    """
    if session is not None:
        yield session
        return

    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StorageFailure(f"Database operation failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
