"""
workflow_kernel.db.engine -- Engine and session plumbing.

Responsibility:
    Build the process-wide SQLAlchemy engine and session factory, create
    the workflow tables and wrap one orchestrator call in a transaction.

Architecture position:
    Kernel > DB.  Services receive a ``Session`` and only flush; commit
    and rollback belong to ``session_scope`` or the caller.

Invariants enforced:
    - Step state, step history, shared context and notification log rows
      written during one ``session_scope`` commit or roll back together.
    - SQLite connections run with SQLAlchemy-managed transactions so that
      savepoints (``Session.begin_nested``) nest inside the outer one.

Failure modes:
    - RuntimeError when a session is requested before
      ``init_engine_from_url``.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workflow_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first DML statement; take over so
    # SAVEPOINT always runs inside an explicit transaction.
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(database_url: str, echo: bool = False) -> Engine:
    """Create the engine and session factory for ``database_url``.

    ``sqlite:///:memory:`` shares one connection across sessions so every
    session sees the same tables.
    """
    global _engine, _sessions

    options: dict = {"echo": echo}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite and ":memory:" in database_url:
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}

    _engine = create_engine(database_url, **options)
    if is_sqlite:
        _enable_sqlite_savepoints(_engine)
    _sessions = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def _require_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _sessions is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _sessions()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Run one orchestrator call in a transaction.

    Commits on normal exit; on any exception rolls back, closes and
    re-raises, so a rejected transition leaves nothing behind.

    Usage:
        with session_scope() as session:
            runtime = build_workflow_runtime(session)
            runtime.complete_step(step_id, actor=actor, payload=payload)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("workflow_transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the template, instance and notification log tables."""
    from workflow_kernel.db.base import Base
    import workflow_kernel.models  # noqa: F401

    Base.metadata.create_all(_require_engine())


def drop_tables() -> None:
    """Drop every workflow table."""
    from workflow_kernel.db.base import Base
    import workflow_kernel.models  # noqa: F401

    Base.metadata.drop_all(_require_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _sessions
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None
