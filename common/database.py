"""SQLAlchemy engine, session factory and transaction helpers."""
import logging
import random
import time
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONFLICT_MARKERS = ("locked", "deadlock", "could not serialize", "lock timeout", "busy")
_GUARD_TABLE = "booking_guards"


class Base(DeclarativeBase):
    pass


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Writers queue on the SQLite file lock instead of failing immediately.
        return {"check_same_thread": False, "timeout": 30}
    return {}


engine = create_engine(
    settings.database_url,
    connect_args=_connect_args(settings.database_url),
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _retry_delay(attempt: int) -> float:
    return 0.05 * (2 ** (attempt - 1)) + random.uniform(0, 0.05)


def is_store_conflict(exc: Exception) -> bool:
    """True for failures caused by a concurrent writer rather than a broken store.

    The only integrity failure that counts is two writers creating the same
    slot guard row; foreign-key, not-null and other constraint violations are
    data errors and must not be retried.
    """
    message = str(getattr(exc, "orig", exc)).lower()
    if isinstance(exc, IntegrityError):
        return _GUARD_TABLE in message and ("unique" in message or "duplicate key" in message)
    if isinstance(exc, OperationalError):
        return any(marker in message for marker in _CONFLICT_MARKERS)
    return False


def run_atomic(
    db: Session,
    work: Callable[[], T],
    attempts: int,
    on_exhausted: Optional[Callable[[], Exception]] = None,
) -> T:
    """Run ``work`` and commit it as one transaction, retrying on store conflicts.

    Any other exception rolls the transaction back and propagates. Once the
    attempts are used up the last conflict is re-raised, or replaced by
    ``on_exhausted()`` when given.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")
    attempt = 1
    while True:
        try:
            result = work()
            db.commit()
            return result
        except (IntegrityError, OperationalError) as exc:
            db.rollback()
            if not is_store_conflict(exc):
                raise
            logger.warning("Store conflict on attempt %s/%s: %s", attempt, attempts, exc.orig)
            if attempt >= attempts:
                if on_exhausted is not None:
                    raise on_exhausted() from exc
                raise
        except Exception:
            db.rollback()
            raise
        time.sleep(_retry_delay(attempt))
        attempt += 1
