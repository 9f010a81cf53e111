"""Session Calendar: the Open Studio sessions bookings are anchored to."""
from __future__ import annotations

from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .cache import SimpleTTLCache
from .config import get_settings
from .errors import ErrorCode, OpenStudioError
from .models import ACTIVE_BOOKING_STATUSES, Booking, StudioSession
from .schemas import UpcomingSession
from .time_utils import now as clock_now

settings = get_settings()
upcoming_cache: SimpleTTLCache[List[UpcomingSession]] = SimpleTTLCache(ttl=settings.session_cache_ttl)


def _upcoming_key(studio_id: int, horizon_days: int, today: date) -> str:
    return f"upcoming:{studio_id}:{horizon_days}:{today.isoformat()}"


def get_session(db: Session, session_id: int, studio_id: Optional[int] = None) -> StudioSession:
    query = db.query(StudioSession).filter(StudioSession.id == session_id)
    if studio_id is not None:
        query = query.filter(StudioSession.studio_id == studio_id)
    session = query.first()
    if not session:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Session not found")
    return session


def _query_upcoming(db: Session, studio_id: int, horizon_days: int, today: date) -> List[UpcomingSession]:
    active_counts = (
        db.query(Booking.session_id, func.count(Booking.id).label("active"))
        .filter(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
        .group_by(Booking.session_id)
        .subquery()
    )
    rows = (
        db.query(StudioSession, func.coalesce(active_counts.c.active, 0))
        .outerjoin(active_counts, active_counts.c.session_id == StudioSession.id)
        .filter(
            StudioSession.studio_id == studio_id,
            StudioSession.is_cancelled.is_(False),
            StudioSession.session_date >= today,
            StudioSession.session_date <= today + timedelta(days=horizon_days),
        )
        .order_by(StudioSession.session_date.asc(), StudioSession.start_time.asc())
        .limit(settings.upcoming_session_limit)
        .all()
    )
    return [
        UpcomingSession.model_validate(session).model_copy(update={"active_bookings": active})
        for session, active in rows
    ]


def list_upcoming(
    db: Session,
    studio_id: int,
    horizon_days: Optional[int] = None,
    today: Optional[date] = None,
    use_cache: bool = True,
) -> List[UpcomingSession]:
    horizon = settings.upcoming_horizon_days if horizon_days is None else horizon_days
    day = today or clock_now().date()
    if not use_cache:
        return _query_upcoming(db, studio_id, horizon, day)
    return upcoming_cache.get_or_set(
        _upcoming_key(studio_id, horizon, day),
        lambda: _query_upcoming(db, studio_id, horizon, day),
    )


def invalidate_upcoming(studio_id: int) -> None:
    upcoming_cache.pop_prefix(f"upcoming:{studio_id}:")
