"""
Engine and session management.

One process-wide engine and session factory, created by
``init_engine_from_url``.  Two backends are supported:

- PostgreSQL, pooled, at READ COMMITTED.  Everything stronger than that is
  done with explicit row locks (``SELECT ... FOR UPDATE``) on stock rows,
  documents and counts.
- SQLite for tests and local runs.  pysqlite's own transaction handling
  breaks SAVEPOINT, and confirmation, count completion and lazy stock-row
  creation all run inside ``Session.begin_nested()``, so BEGIN is emitted
  by SQLAlchemy instead.

Sessions are created with ``expire_on_commit=False`` so rows returned from a
committed ``session_scope`` stay readable after it closes.
"""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from warehouse_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_options(url: URL) -> dict[str, Any]:
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    # An in-memory database exists per connection; share one across sessions.
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def _use_explicit_begin(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
) -> Engine:
    """
    Create the engine and session factory, replacing any previous ones.

    Pool settings only apply to server databases.
    """
    global _engine, _session_factory
    reset_engine()

    url = make_url(database_url)
    backend = url.get_backend_name()
    if backend == "sqlite":
        engine = create_engine(url, echo=echo, **_sqlite_options(url))
        _use_explicit_begin(engine)
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"backend": backend, "echo": echo})
    return engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("Database engine not initialized; call init_engine_from_url() first")


def get_engine() -> Engine:
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for callers that open their own sessions (threads, the facade)."""
    if _session_factory is None:
        raise _not_initialized()
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One unit of work: commit on clean exit, roll back and re-raise otherwise.

    Kernel services never commit; this is where a facade operation's
    transaction ends.
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


def _metadata():
    from warehouse_kernel.db.base import Base
    import warehouse_kernel.models  # noqa: F401  registers every table

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables() -> None:
    """Drop every warehouse table. Tests only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
