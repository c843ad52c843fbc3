from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Base model
Base = declarative_base()

# Execution option asking SQLite to take the write lock when the transaction begins
WRITE_LOCK = "sqlite_write_lock"


def _enable_sqlite_begin_modes(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so writers can ask for BEGIN IMMEDIATE"""

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for the local ledger store"""
    is_sqlite = "sqlite" in database_url.lower()

    if not is_sqlite:
        return create_engine(
            database_url,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=echo
        )

    options = {"connect_args": {"check_same_thread": False}}
    # An in-memory database only lives as long as its single connection
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        options["poolclass"] = StaticPool

    engine = create_engine(database_url, echo=echo, **options)
    _enable_sqlite_begin_modes(engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


def init_db(engine: Engine) -> None:
    """Initialize database tables"""
    # Registers the ledger tables on Base.metadata
    from rxledger.infrastructure.ledger import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def close_db(engine: Engine) -> None:
    """Close database connections"""
    engine.dispose()
