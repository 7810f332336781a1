"""SQLModel engine construction and session dependency."""
from typing import Generator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from mindnest.config import get_settings

_engine = None


def build_engine(database_url: str, busy_timeout_ms: int = 5000) -> Engine:
    """Create an engine for the local store and make sure the schema exists.

    File-backed SQLite databases are switched to WAL with a busy timeout so
    a second writer waits instead of failing on the first lock.
    """
    engine = create_engine(
        database_url,
        connect_args={
            "check_same_thread": False,  # SQLite only; safe for FastAPI
            "timeout": busy_timeout_ms / 1000.0,
        },
    )

    if ":memory:" not in database_url:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            cursor.close()

    create_schema(engine)
    return engine


def create_schema(engine: Engine) -> None:
    """Create all tables, then apply column migrations for older stores."""
    # Import all models so metadata is populated before create_all
    from mindnest.models.review import Issue, Review, ReviewFile  # noqa
    from mindnest.models.setting import Setting  # noqa
    from mindnest.models.sync import SyncLog  # noqa
    from mindnest.models.workspace import File, Workspace  # noqa
    SQLModel.metadata.create_all(engine)
    from mindnest.db.migrations import run_migrations
    run_migrations(engine)


def get_engine() -> Engine:
    """Return the entry-point engine, creating it on first call.

    Only entry points (API, CLI, scheduler) use this; services take the
    engine as a constructor argument.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, settings.db_busy_timeout_ms)
    return _engine


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    with Session(get_engine()) as session:
        yield session


def reset_engine(engine: Optional[Engine] = None) -> None:
    """Swap the entry-point engine (used by tests and the CLI)."""
    global _engine
    _engine = engine
