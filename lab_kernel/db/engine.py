"""
Module: lab_kernel.db.engine
Responsibility: The process-wide engine and session factory, plus the
    commit-or-rollback scope every engine operation runs in.
Architecture position: Kernel > DB.  May import from db/base.py; only
    create_tables/drop_tables reach into models/ to register tables.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; exclusivity comes from explicit
      FOR UPDATE locks on slot lock and stock rows, not from isolation.
    - SQLite (tests, local runs) gets SQLAlchemy-managed BEGIN so nested
      transactions work, foreign keys switched on, and one shared
      connection when the database is in memory.
    - Sessions never expire attributes on commit; services hand out DTOs
      built before the commit.

Failure modes:
    - RuntimeError from get_engine/get_session/get_session_factory before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from lab_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create an engine for ``database_url`` without installing it."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    memory_db = url.database in (None, "", ":memory:")
    sqlite_engine = create_engine(
        url,
        echo=echo,
        poolclass=StaticPool if memory_db else None,
        connect_args={"check_same_thread": False},
    )
    _enable_sqlite_savepoints(sqlite_engine)
    return sqlite_engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite opens transactions on its own and breaks SAVEPOINT unless
    # SQLAlchemy emits BEGIN itself.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build the engine and install it as the process-wide default.

    Calling again without ``reset_engine()`` replaces the previous engine;
    ``get_engine``, ``get_session`` and ``session_scope()`` then use the new
    one.
    """
    global _engine, _SessionFactory

    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The factory WorkflowEngine opens one session per operation from."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One session, one transaction.

    Commits when the block exits normally; on any exception rolls back,
    closes and re-raises.  Uses the installed factory unless one is given.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create every model table that does not exist yet."""
    from lab_kernel.db.base import Base
    import lab_kernel.models  # noqa: F401  registers the tables

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every model table. Tests and local resets only."""
    from lab_kernel.db.base import Base
    import lab_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose and forget the installed engine and factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
