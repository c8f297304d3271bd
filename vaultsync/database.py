"""Local store database connection and session management"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from vaultsync.config import settings

# Base class for all local store models
Base = declarative_base()


def create_local_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create the SQLite engine backing the local store.

    In-memory URLs share a single connection so every session sees the same data.
    """
    url = database_url or settings.local_database_url
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory for the local store"""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def init_local_store(engine: Engine) -> None:
    """Create all local store tables if they do not exist yet"""
    # Import models so they register on Base.metadata
    import vaultsync.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Transactional scope: commits on success, rolls back everything on error.

    Usage:
        with session_scope(factory) as session:
            session.add(obj)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
