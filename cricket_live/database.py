"""
Database engine and session management.

The engine services never create sessions themselves: a `sessionmaker` (or a
session) is passed in, so tests can run against an in-memory SQLite store.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from cricket_live.config import DATABASE_URL, SQL_ECHO, STORE_TIMEOUT_SECONDS
from cricket_live.errors import ConcurrencyConflict
from cricket_live.models import Base


def make_engine(url: str = DATABASE_URL, timeout_seconds: int = STORE_TIMEOUT_SECONDS) -> Engine:
    """
    SQLite: `timeout` bounds how long a writer waits on the database lock.
    Other backends: pool connections are pre-pinged and a lock wait is bounded
    by the server's own statement timeout.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
            echo=SQL_ECHO,
        )

    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before using
        pool_timeout=timeout_seconds,
        echo=SQL_ECHO,
    )


engine = make_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(bind=bind or engine, checkfirst=True)


def _is_duplicate_row(error: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed"; postgres: "duplicate key value"
    message = str(error.orig).lower()
    return "unique" in message or "duplicate" in message


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Commit on success, roll back on any error.

    Lost-update races (row version mismatch), lock timeouts and duplicate
    inserts of a lazily created row (a new over, a first performance row)
    surface as ConcurrencyConflict so the caller can retry the whole operation.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrencyConflict(f"Concurrent update detected: {e}") from e
    except IntegrityError as e:
        db.rollback()
        if _is_duplicate_row(e):
            raise ConcurrencyConflict(f"Row created concurrently: {e.orig}") from e
        raise
    except OperationalError as e:
        db.rollback()
        if "locked" in str(e).lower() or "timeout" in str(e).lower():
            raise ConcurrencyConflict(f"Store busy: {e}") from e
        raise
    except Exception:
        db.rollback()
        raise
