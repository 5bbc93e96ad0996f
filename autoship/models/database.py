# autoship/models/database.py
from typing import Tuple

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def create_session_factory(database_url: str, pool_size: int = 10, max_overflow: int = 20) -> Tuple[Engine, sessionmaker]:
    """Build the engine and session factory for a database URL"""
    if database_url.startswith("sqlite"):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        extra = {"poolclass": StaticPool} if in_memory else {}
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},  # Needed for SQLite
            **extra
        )

        # SQLite only enforces ON DELETE CASCADE with foreign keys switched on
        @event.listens_for(engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    else:
        engine = create_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True
        )

    session_factory = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine
    )
    return engine, session_factory


def init_db(engine: Engine):
    """Create tables directly (tests and local runs; production uses alembic)"""
    from . import task  # noqa: F401  registers the mappers

    Base.metadata.create_all(bind=engine)
