"""
Database Configuration

Supports both SQLite (development) and PostgreSQL (production).
Uses SQLAlchemy 2.0+ patterns.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings


def create_db_engine(url: str = None, echo: bool = None) -> Engine:
    """Create an engine for the given URL (defaults to settings.DATABASE_URL)"""
    url = url or settings.DATABASE_URL
    echo = settings.DEBUG if echo is None else echo

    if url.startswith("sqlite"):
        # SQLite configuration (for development and tests)
        if url not in ("sqlite://", "sqlite:///:memory:"):
            db_path = Path(url.replace("sqlite:///", "", 1))
            db_path.parent.mkdir(parents=True, exist_ok=True)
        db_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo
        )
        event.listen(db_engine, "connect", _enable_sqlite_foreign_keys)
        return db_engine

    # PostgreSQL configuration (for production)
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=echo
    )


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FOREIGN KEY clauses unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Engine configuration
engine = create_db_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a block as one transaction: commit on success, roll back on any error.

    Every index-maintaining mutation runs inside this block so that the closure
    tables are never observable half-written.
    """
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise


def init_db(db_engine: Engine = None):
    """Initialize the database (create all tables)"""
    # Import all models to register them with Base
    from docaccess.models import (  # noqa: F401
        User, Workspace, WorkspaceMember, Page, PageTreePath,
        Group, GroupMember, GroupAncestorPath, GroupMembershipClosure,
        PagePermission
    )

    db_engine = db_engine or engine
    Base.metadata.create_all(bind=db_engine)
    return db_engine
