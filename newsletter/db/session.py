from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from newsletter.core.settings import get_settings

_engine = None
_session_factory = None

SQLITE_BUSY_TIMEOUT_S = 30


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine with the transaction semantics the queue and ledger rely on.

    SQLite has no row locks, so every transaction is opened with
    ``BEGIN IMMEDIATE``: writers queue on the database lock (bounded by the
    busy timeout) instead of failing, which gives ledger inserts the same
    block-until-the-other-side-resolves behaviour PostgreSQL gives on a
    conflicting uncommitted unique key.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    connect_args.setdefault("timeout", SQLITE_BUSY_TIMEOUT_S)
    engine = create_engine(database_url, connect_args=connect_args, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_db_engine(settings.database_url)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)


def reset_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_db_session():
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
