"""Waitlist Engine: FIFO queues per (resource, session, start time).

Positions are handed out as ``max(active positions) + 1`` and never
compacted when someone leaves. Promotion only marks the head of the queue
as eligible and notifies it; the member still has to book.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import events
from .availability import lock_slot_group, remaining_capacity
from .config import get_settings
from .database import run_atomic
from .entitlements import EntitlementRef, get_punch_pass, get_subscription
from .errors import ErrorCode, OpenStudioError
from .models import Resource, StudioSession, WaitlistEntry
from .session_calendar import get_session
from .time_utils import now as clock_now, to_minutes

logger = logging.getLogger(__name__)

LEFT = "LEFT"
BOOKED = "BOOKED"
LAPSED = "LAPSED"

GroupKey = Tuple[int, int, str]


@dataclass
class PromotionSweep:
    lapsed: List[WaitlistEntry] = field(default_factory=list)
    promoted: List[WaitlistEntry] = field(default_factory=list)


def _active_in_group(db: Session, resource_id: int, session_id: int, start_time: str):
    return db.query(WaitlistEntry).filter(
        WaitlistEntry.resource_id == resource_id,
        WaitlistEntry.session_id == session_id,
        WaitlistEntry.start_time == start_time,
        WaitlistEntry.removed_at.is_(None),
    )


def _claim_deadline(now: datetime) -> datetime:
    return now - timedelta(minutes=get_settings().waitlist_claim_minutes)


def promotion_payload(entry: WaitlistEntry) -> dict:
    return {
        "waitlist_id": entry.id,
        "customer_id": entry.customer_id,
        "resource_id": entry.resource_id,
        "session_id": entry.session_id,
        "start_time": entry.start_time,
        "end_time": entry.end_time,
        "position": entry.position,
        "promoted_at": entry.promoted_at,
    }


def join(
    db: Session,
    customer_id: int,
    studio_id: int,
    resource_id: int,
    session_id: int,
    start_time: str,
    end_time: str,
    ref: EntitlementRef,
    now: Optional[datetime] = None,
) -> WaitlistEntry:
    now = now or clock_now()
    start, end = to_minutes(start_time), to_minutes(end_time)
    if end <= start:
        raise OpenStudioError(ErrorCode.INVALID_TIME_RANGE)

    def work() -> WaitlistEntry:
        session = get_session(db, session_id, studio_id)
        if session.is_cancelled:
            raise OpenStudioError(ErrorCode.NOT_FOUND, "Session not found")
        if start < to_minutes(session.start_time) or end > to_minutes(session.end_time):
            raise OpenStudioError(ErrorCode.OUTSIDE_SESSION_WINDOW)
        resource = (
            db.query(Resource)
            .filter(Resource.id == resource_id, Resource.studio_id == studio_id, Resource.is_active.is_(True))
            .first()
        )
        if resource is None:
            raise OpenStudioError(ErrorCode.NOT_FOUND, "Resource not found")
        if ref.is_subscription:
            if get_subscription(db, customer_id, ref.subscription_id) is None:
                raise OpenStudioError(ErrorCode.NOT_FOUND, "Subscription not found")
        elif get_punch_pass(db, customer_id, ref.punch_pass_id) is None:
            raise OpenStudioError(ErrorCode.NOT_FOUND, "Punch pass not found")

        lock_slot_group(db, resource_id, session_id)
        group = _active_in_group(db, resource_id, session_id, start_time)
        if group.filter(WaitlistEntry.customer_id == customer_id).first():
            raise OpenStudioError(ErrorCode.ALREADY_WAITLISTED)
        max_position = group.with_entities(func.max(WaitlistEntry.position)).scalar() or 0
        entry = WaitlistEntry(
            studio_id=studio_id,
            resource_id=resource_id,
            session_id=session_id,
            customer_id=customer_id,
            subscription_id=ref.subscription_id,
            punch_pass_id=ref.punch_pass_id,
            start_time=start_time,
            end_time=end_time,
            position=max_position + 1,
            joined_at=now,
        )
        db.add(entry)
        db.flush()
        return entry

    entry = run_atomic(db, work, get_settings().booking_retry_attempts)
    db.refresh(entry)
    logger.info(
        "Customer %s joined waitlist for resource %s session %s at %s (position %s)",
        customer_id,
        resource_id,
        session_id,
        start_time,
        entry.position,
    )
    return entry


def get_entry(db: Session, waitlist_id: int) -> WaitlistEntry:
    entry = db.query(WaitlistEntry).filter(WaitlistEntry.id == waitlist_id).first()
    if not entry:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Waitlist entry not found")
    return entry


def _locked_entry(db: Session, waitlist_id: int) -> WaitlistEntry:
    entry = get_entry(db, waitlist_id)
    lock_slot_group(db, entry.resource_id, entry.session_id)
    # Reload under the guard; a concurrent leave or promotion may have committed since the first read.
    return db.query(WaitlistEntry).filter(WaitlistEntry.id == waitlist_id).populate_existing().with_for_update().one()


def leave(db: Session, waitlist_id: int, now: Optional[datetime] = None) -> WaitlistEntry:
    """Remove an entry without renumbering the rest of the queue."""
    now = now or clock_now()
    promoted: List[WaitlistEntry] = []

    def work() -> WaitlistEntry:
        promoted.clear()
        entry = _locked_entry(db, waitlist_id)
        if entry.removed_at is not None:
            raise OpenStudioError(ErrorCode.NOT_FOUND, "Waitlist entry not found")
        was_promoted = entry.promoted_at is not None
        entry.removed_at = now
        entry.removal_reason = LEFT
        db.flush()
        if was_promoted:
            # The eligibility it held passes down the queue.
            nxt = promote_next(db, entry.resource_id, entry.session_id, entry.start_time, now, check_capacity=True)
            if nxt is not None:
                promoted.append(nxt)
        return entry

    entry = run_atomic(db, work, get_settings().booking_retry_attempts)
    for nxt in promoted:
        events.publish_event(events.WAITLIST_PROMOTED, promotion_payload(nxt))
    return entry


def remove_for_booking(
    db: Session,
    customer_id: int,
    resource_id: int,
    session_id: int,
    start_time: str,
    now: datetime,
) -> Optional[WaitlistEntry]:
    entry = _active_in_group(db, resource_id, session_id, start_time).filter(WaitlistEntry.customer_id == customer_id).first()
    if entry is not None:
        entry.removed_at = now
        entry.removal_reason = BOOKED
    return entry


def _lapse_stale(db: Session, resource_id: int, session_id: int, start_time: str, now: datetime) -> List[WaitlistEntry]:
    stale = (
        _active_in_group(db, resource_id, session_id, start_time)
        .filter(WaitlistEntry.promoted_at.is_not(None), WaitlistEntry.promoted_at <= _claim_deadline(now))
        .all()
    )
    for entry in stale:
        entry.removed_at = now
        entry.removal_reason = LAPSED
        logger.info("Waitlist entry %s lapsed without booking", entry.id)
    if stale:
        db.flush()
    return stale


def promote_next(
    db: Session,
    resource_id: int,
    session_id: int,
    start_time: str,
    now: datetime,
    check_capacity: bool = False,
) -> Optional[WaitlistEntry]:
    """Mark the head of the queue eligible. Runs inside the caller's transaction."""
    _lapse_stale(db, resource_id, session_id, start_time, now)
    head = (
        _active_in_group(db, resource_id, session_id, start_time)
        .filter(WaitlistEntry.promoted_at.is_(None))
        .order_by(WaitlistEntry.position.asc(), WaitlistEntry.id.asc())
        .first()
    )
    if head is None:
        return None
    if check_capacity:
        session = db.get(StudioSession, session_id)
        resource = db.get(Resource, resource_id)
        window = (to_minutes(head.start_time), to_minutes(head.end_time))
        if remaining_capacity(db, session, resource, window[0], window[1], now) < 1:
            return None
    head.promoted_at = now
    db.flush()
    logger.info("Promoted waitlist entry %s (position %s) for resource %s session %s", head.id, head.position, resource_id, session_id)
    return head


def expire_promotions(
    db: Session,
    now: Optional[datetime] = None,
    session_id: Optional[int] = None,
    studio_id: Optional[int] = None,
) -> PromotionSweep:
    """Lapse promoted entries whose claim window passed and promote whoever is next."""
    now = now or clock_now()
    sweep = PromotionSweep()

    def work() -> PromotionSweep:
        sweep.lapsed.clear()
        sweep.promoted.clear()
        query = db.query(WaitlistEntry).filter(
            WaitlistEntry.removed_at.is_(None),
            WaitlistEntry.promoted_at.is_not(None),
            WaitlistEntry.promoted_at <= _claim_deadline(now),
        )
        if session_id is not None:
            query = query.filter(WaitlistEntry.session_id == session_id)
        if studio_id is not None:
            query = query.filter(WaitlistEntry.studio_id == studio_id)
        groups: Set[GroupKey] = {(e.resource_id, e.session_id, e.start_time) for e in query.all()}
        for resource_id, group_session_id, start_time in sorted(groups):
            lock_slot_group(db, resource_id, group_session_id)
            sweep.lapsed.extend(_lapse_stale(db, resource_id, group_session_id, start_time, now))
            nxt = promote_next(db, resource_id, group_session_id, start_time, now, check_capacity=True)
            if nxt is not None:
                sweep.promoted.append(nxt)
        return sweep

    run_atomic(db, work, get_settings().booking_retry_attempts)
    for entry in sweep.promoted:
        events.publish_event(events.WAITLIST_PROMOTED, promotion_payload(entry))
    return sweep


def list_for_customer(db: Session, customer_id: int) -> List[WaitlistEntry]:
    return (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.customer_id == customer_id, WaitlistEntry.removed_at.is_(None))
        .order_by(WaitlistEntry.joined_at.asc())
        .all()
    )


def list_for_session(db: Session, session_id: int, resource_id: Optional[int] = None) -> List[WaitlistEntry]:
    query = db.query(WaitlistEntry).filter(WaitlistEntry.session_id == session_id, WaitlistEntry.removed_at.is_(None))
    if resource_id is not None:
        query = query.filter(WaitlistEntry.resource_id == resource_id)
    return query.order_by(WaitlistEntry.resource_id, WaitlistEntry.start_time, WaitlistEntry.position).all()
