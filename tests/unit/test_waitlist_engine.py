"""Unit tests for the waitlist engine."""
from datetime import date, datetime, timedelta

import pytest

from common import booking as bookings
from common import waitlist
from common.database import SessionLocal
from common.entitlements import EntitlementRef
from common.errors import ErrorCode, OpenStudioError
from common.models import WaitlistEntry

NOW = datetime(2030, 3, 11, 9, 0)
SESSION_DAY = date(2030, 3, 12)


@pytest.fixture()
def group(make_user, make_resource, make_session, make_punch_pass):
    wheel = make_resource("Wheel", quantity=1)
    session = make_session(SESSION_DAY)
    members = {}
    for name in ("ann", "ben", "cat", "dan"):
        user = make_user(name)
        members[name] = (user, EntitlementRef(punch_pass_id=make_punch_pass(user).id))
    return {"wheel": wheel, "session": session, "members": members}


def _join(db, group, name, start="10:00", end="12:00", now=NOW):
    user, ref = group["members"][name]
    return waitlist.join(db, user.id, user.studio_id, group["wheel"].id, group["session"].id, start, end, ref, now=now)


def test_positions_follow_join_order_without_compaction(db_session, group):
    ann = _join(db_session, group, "ann")
    ben = _join(db_session, group, "ben", now=NOW + timedelta(minutes=1))
    cat = _join(db_session, group, "cat", now=NOW + timedelta(minutes=2))
    assert [ann.position, ben.position, cat.position] == [1, 2, 3]

    waitlist.leave(db_session, ben.id, now=NOW + timedelta(minutes=3))
    dan = _join(db_session, group, "dan", now=NOW + timedelta(minutes=4))

    db_session.refresh(ann)
    db_session.refresh(cat)
    assert (ann.position, cat.position, dan.position) == (1, 3, 4)
    active = waitlist.list_for_session(db_session, group["session"].id)
    assert [entry.position for entry in active] == [1, 3, 4]


def test_double_join_is_rejected(db_session, group):
    _join(db_session, group, "ann")
    with pytest.raises(OpenStudioError) as excinfo:
        _join(db_session, group, "ann", now=NOW + timedelta(minutes=5))
    assert excinfo.value.code is ErrorCode.ALREADY_WAITLISTED
    assert db_session.query(WaitlistEntry).count() == 1


def test_groups_are_keyed_by_start_time(db_session, group):
    _join(db_session, group, "ann", "10:00", "11:00")
    later = _join(db_session, group, "ben", "11:00", "12:00")
    same_customer_other_slot = _join(db_session, group, "ann", "12:00", "13:00")
    assert later.position == 1
    assert same_customer_other_slot.position == 1


def test_rejoin_after_leaving(db_session, group):
    first = _join(db_session, group, "ann")
    _join(db_session, group, "ben")
    waitlist.leave(db_session, first.id, now=NOW)
    again = _join(db_session, group, "ann", now=NOW + timedelta(minutes=1))
    assert again.position == 3


def test_leave_twice_is_not_found(db_session, group):
    entry = _join(db_session, group, "ann")
    left = waitlist.leave(db_session, entry.id, now=NOW)
    assert left.removal_reason == waitlist.LEFT
    with pytest.raises(OpenStudioError) as excinfo:
        waitlist.leave(db_session, entry.id, now=NOW)
    assert excinfo.value.code is ErrorCode.NOT_FOUND


def test_join_outside_session_window(db_session, group):
    with pytest.raises(OpenStudioError) as excinfo:
        _join(db_session, group, "ann", "13:00", "15:00")
    assert excinfo.value.code is ErrorCode.OUTSIDE_SESSION_WINDOW


def test_join_with_foreign_entitlement(db_session, group):
    ann, _ = group["members"]["ann"]
    _, ben_ref = group["members"]["ben"]
    with pytest.raises(OpenStudioError) as excinfo:
        waitlist.join(
            db_session, ann.id, ann.studio_id, group["wheel"].id, group["session"].id, "10:00", "12:00", ben_ref, now=NOW
        )
    assert excinfo.value.code is ErrorCode.NOT_FOUND


def test_cancellation_promotes_lowest_position_only(db_session, group, make_user, make_punch_pass):
    owner = make_user("owner")
    ref = EntitlementRef(punch_pass_id=make_punch_pass(owner).id)
    booking = bookings.create_booking(
        db_session, owner.id, owner.studio_id, group["session"].id, group["wheel"].id, "10:00", "12:00", ref, now=NOW
    )
    ann = _join(db_session, group, "ann")
    ben = _join(db_session, group, "ben")

    result = bookings.cancel(db_session, booking.id, owner.id, now=NOW + timedelta(minutes=10))
    assert result.promoted.id == ann.id

    db_session.refresh(ann)
    db_session.refresh(ben)
    assert ann.promoted_at == NOW + timedelta(minutes=10)
    assert ben.promoted_at is None
    assert ann.removed_at is None


def test_promoted_leaver_passes_eligibility_on(db_session, group):
    ann = _join(db_session, group, "ann")
    ben = _join(db_session, group, "ben")
    waitlist.promote_next(db_session, group["wheel"].id, group["session"].id, "10:00", NOW)
    db_session.commit()

    waitlist.leave(db_session, ann.id, now=NOW + timedelta(minutes=5))
    db_session.refresh(ben)
    assert ben.promoted_at == NOW + timedelta(minutes=5)


def test_promoted_leaver_without_free_capacity(db_session, group, make_user, make_punch_pass):
    ann = _join(db_session, group, "ann")
    ben = _join(db_session, group, "ben")
    waitlist.promote_next(db_session, group["wheel"].id, group["session"].id, "10:00", NOW)
    db_session.commit()

    owner = make_user("owner")
    ref = EntitlementRef(punch_pass_id=make_punch_pass(owner).id)
    bookings.create_booking(
        db_session, owner.id, owner.studio_id, group["session"].id, group["wheel"].id, "10:00", "12:00", ref, now=NOW
    )

    waitlist.leave(db_session, ann.id, now=NOW + timedelta(minutes=5))
    db_session.refresh(ben)
    assert ben.promoted_at is None


def test_unclaimed_promotion_lapses(db_session, group):
    ann = _join(db_session, group, "ann")
    ben = _join(db_session, group, "ben")
    waitlist.promote_next(db_session, group["wheel"].id, group["session"].id, "10:00", NOW)
    db_session.commit()

    early = waitlist.expire_promotions(db_session, now=NOW + timedelta(minutes=30))
    assert early.lapsed == [] and early.promoted == []

    later = NOW + timedelta(minutes=61)
    sweep = waitlist.expire_promotions(db_session, now=later)
    assert [entry.id for entry in sweep.lapsed] == [ann.id]
    assert [entry.id for entry in sweep.promoted] == [ben.id]

    db_session.refresh(ann)
    db_session.refresh(ben)
    assert ann.removal_reason == waitlist.LAPSED
    assert ann.removed_at == later
    assert ben.promoted_at == later
    assert [entry.id for entry in waitlist.list_for_customer(db_session, ann.customer_id)] == []


def test_stale_second_leave_promotes_only_once(db_session, group):
    ann = _join(db_session, group, "ann")
    ben = _join(db_session, group, "ben")
    cat = _join(db_session, group, "cat")
    waitlist.promote_next(db_session, group["wheel"].id, group["session"].id, "10:00", NOW)
    db_session.commit()
    ann_id, ben_id, cat_id = ann.id, ben.id, cat.id

    stale, other = SessionLocal(), SessionLocal()
    try:
        waitlist.get_entry(stale, ann_id)
        waitlist.leave(other, ann_id, now=NOW + timedelta(minutes=5))

        with pytest.raises(OpenStudioError) as excinfo:
            waitlist.leave(stale, ann_id, now=NOW + timedelta(minutes=6))
        assert excinfo.value.code is ErrorCode.NOT_FOUND
    finally:
        stale.close()
        other.close()

    db_session.expire_all()
    assert db_session.get(WaitlistEntry, ben_id).promoted_at == NOW + timedelta(minutes=5)
    assert db_session.get(WaitlistEntry, cat_id).promoted_at is None
