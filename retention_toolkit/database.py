"""
Database plumbing for the Retention Toolkit.

Every participating table and the audit log share one declarative ``Base``.
The lifecycle manager, sweeper and audit log talk to the database only through
a ``sessionmaker``; each record-level operation runs inside
``session_factory.begin()``.
"""

from typing import Any, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    """Turn on foreign key enforcement for every new SQLite connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine with backend-specific pooling.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured engine
    """
    if database_url.startswith("sqlite"):
        if database_url in _MEMORY_URLS:
            # One shared connection so every session sees the same database
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False},
            )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        # PostgreSQL, MySQL, etc.
        engine = create_engine(
            database_url,
            echo=echo,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
        )

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:  # type: ignore[type-arg]
    """Create the session factory used as the persistence gateway."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all participating tables and the audit log table."""
    # Register the mapped classes on Base.metadata before create_all
    from . import entities  # noqa: F401
    from .audit_trail import storage  # noqa: F401

    Base.metadata.create_all(bind=engine)


def setup_database(
    database_url: str, create_tables: bool = True, echo: bool = False
) -> sessionmaker:  # type: ignore[type-arg]
    """
    Build an engine and session factory in one step.

    Args:
        database_url: SQLAlchemy database URL
        create_tables: Create missing tables
        echo: Log emitted SQL

    Returns:
        Session factory bound to the new engine
    """
    engine = create_database_engine(database_url, echo=echo)
    if create_tables:
        init_db(engine)
    return create_session_factory(engine)


def dispose(session_factory: Optional[sessionmaker]) -> None:  # type: ignore[type-arg]
    """Release the connection pool behind a session factory."""
    if session_factory is None:
        return
    bind = session_factory.kw.get("bind")
    if bind is not None:
        bind.dispose()
