"""Database connection and session management."""

import os
import logging
import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError

from .errors import ConflictError, DomainError, StorageError, ValidationError

logger = logging.getLogger(__name__)

# Database URL from environment
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./essaycore.db")


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Writers wait on the file lock instead of failing straight away
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_size": 10,
        "max_overflow": 20,
    }


engine = create_engine(
    DATABASE_URL,
    echo=os.getenv("SQL_DEBUG", "false").lower() == "true",
    **_engine_options(DATABASE_URL),
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def rollback_and_wrap(db: Session, exc: SQLAlchemyError, entity: str, key: Optional[str] = None) -> DomainError:
    """Roll back ``db`` and translate a storage exception into a service error."""
    logger.error(f"Storage error on {entity} {key}: {exc}")
    db.rollback()
    if isinstance(exc, DataError):
        return ValidationError(f"{entity} value rejected by the database", entity=entity, key=key)
    if isinstance(exc, IntegrityError):
        return ConflictError(f"{entity} conflicts with an existing row", entity=entity, key=key)
    return StorageError(f"Could not save {entity}", entity=entity, key=key)


def commit_or_raise(db: Session, entity: str, key: Optional[str] = None) -> None:
    """Commit the session; storage failures are rolled back and re-raised as DomainError."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        raise rollback_and_wrap(db, e, entity, key) from e


def create_tables(bind=None):
    """Create all tables in the database."""
    # Models register themselves on Base.metadata at import time
    from . import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Error creating tables: {e}")
        raise


def drop_tables(bind=None):
    """Drop all tables in the database."""
    try:
        Base.metadata.drop_all(bind=bind or engine)
        logger.info("Database tables dropped successfully")
    except SQLAlchemyError as e:
        logger.error(f"Error dropping tables: {e}")
        raise


def check_database_connection() -> bool:
    """Check if database connection is working."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False


# Event listeners for connection management
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Switch on foreign key enforcement for SQLite connections."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@event.listens_for(engine, "checkout")
def receive_checkout(dbapi_connection, connection_record, connection_proxy):
    """Log connection checkout."""
    logger.debug("Connection checked out from pool")


@event.listens_for(engine, "checkin")
def receive_checkin(dbapi_connection, connection_record):
    """Log connection checkin."""
    logger.debug("Connection checked in to pool")
