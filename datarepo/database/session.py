"""
Database Session Management
============================

Handles database connections and the unit-of-work (session) lifecycle.

A Session is the unit-of-work: it owns the identity map, tracks loaded
entities and flushes their changes together. One session belongs to one
thread of execution and borrows a pooled connection for its lifetime.
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from datarepo.config import settings

logger = logging.getLogger(__name__)


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create and configure the database engine."""
    database_url = database_url or settings.database_url
    echo = settings.app_debug if echo is None else echo

    # SQLite-specific configuration
    if database_url.startswith("sqlite"):
        # Ensure data directory exists
        if ":///" in database_url:
            db_path = database_url.split(":///")[1]
            if not db_path.startswith(":memory:"):
                db_dir = os.path.dirname(db_path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)

        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo
        )

        # Enable foreign keys and WAL mode for SQLite
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    else:
        engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

    logger.debug("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def create_session_factory(engine_instance: Engine) -> sessionmaker:
    """Session factory bound to an engine (no autoflush; repositories flush explicitly)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine_instance)


# Create global engine and session factory
engine = create_db_engine()
SessionLocal = create_session_factory(engine)


@contextmanager
def get_db_context(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for one unit-of-work.

    Commits when the block completes, rolls back and re-raises on error,
    and always returns the connection to the pool.

    Usage:
        with get_db_context() as db:
            repo = MemberRepository(db)
            repo.save(Member("member1", 10))
    """
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Session rollback due to exception: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency-injection style session generator.

    The caller owns commit; the session is always closed.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all_tables(engine_instance=None):
    """Create all tables in the database."""
    from datarepo.models.base import Base

    if engine_instance is None:
        engine_instance = engine

    Base.metadata.create_all(bind=engine_instance)


def drop_all_tables(engine_instance=None):
    """Drop all tables in the database."""
    from datarepo.models.base import Base

    if engine_instance is None:
        engine_instance = engine

    Base.metadata.drop_all(bind=engine_instance)
