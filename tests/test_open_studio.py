from datetime import date

import pytest

from common.models import RoleEnum


@pytest.fixture()
def studio(make_user, make_resource, make_session, make_subscription, tomorrow):
    people = {name: make_user(name) for name in ("alice", "bob", "carol")}
    people["staff"] = make_user("staff", role=RoleEnum.STAFF)
    return {
        "people": people,
        "subscriptions": {name: make_subscription(people[name]).id for name in ("alice", "bob", "carol")},
        "wheel": make_resource("Wheel", quantity=2),
        "session": make_session(tomorrow, "10:00", "14:00"),
    }


def _booking_body(studio, name, start="10:00", end="12:00"):
    return {
        "sessionId": studio["session"].id,
        "resourceId": studio["wheel"].id,
        "startTime": start,
        "endTime": end,
        "subscriptionId": studio["subscriptions"][name],
    }


def test_booking_waitlist_and_promotion_flow(open_studio_client, studio, headers_for):
    people = studio["people"]
    alice, bob, carol = (headers_for(people[name]) for name in ("alice", "bob", "carol"))

    sessions = open_studio_client.get("/open-studio/sessions", headers=alice)
    assert sessions.status_code == 200
    assert [(s["id"], s["activeBookings"]) for s in sessions.json()] == [(studio["session"].id, 0)]

    first = open_studio_client.post("/open-studio/bookings", json=_booking_body(studio, "alice"), headers=alice)
    assert first.status_code == 201
    assert first.json()["status"] == "RESERVED"
    assert first.json()["isWalkIn"] is False

    second = open_studio_client.post("/open-studio/bookings", json=_booking_body(studio, "bob"), headers=bob)
    assert second.status_code == 201

    full = open_studio_client.post("/open-studio/bookings", json=_booking_body(studio, "carol"), headers=carol)
    assert full.status_code == 409
    assert full.json()["error"] == "SLOT_UNAVAILABLE"

    availability = open_studio_client.get(
        f"/open-studio/sessions/{studio['session'].id}/availability", headers=carol
    ).json()
    wheel = availability["resources"][0]
    assert wheel["resourceName"] == "Wheel"
    assert wheel["totalQuantity"] == 2
    assert wheel["currentlyBooked"] == 2
    assert wheel["available"] == 0
    assert [slot["status"] for slot in wheel["slots"]] == ["BOOKED", "BOOKED", "OPEN", "OPEN"]

    sessions = open_studio_client.get("/open-studio/sessions", headers=alice).json()
    assert sessions[0]["activeBookings"] == 2

    joined = open_studio_client.post("/open-studio/waitlist", json=_booking_body(studio, "carol"), headers=carol)
    assert joined.status_code == 201
    assert joined.json()["position"] == 1
    again = open_studio_client.post("/open-studio/waitlist", json=_booking_body(studio, "carol"), headers=carol)
    assert again.status_code == 409
    assert again.json()["error"] == "ALREADY_WAITLISTED"

    not_yours = open_studio_client.delete(f"/open-studio/bookings/{first.json()['id']}", headers=bob)
    assert not_yours.status_code == 403

    cancelled = open_studio_client.delete(f"/open-studio/bookings/{first.json()['id']}", headers=alice)
    assert cancelled.status_code == 200
    body = cancelled.json()
    assert body["credited"] is True
    assert body["booking"]["status"] == "CANCELLED"
    assert body["promotedWaitlistId"] == joined.json()["id"]

    my_waitlist = open_studio_client.get("/open-studio/my-waitlist", headers=carol).json()
    assert my_waitlist[0]["promotedAt"] is not None

    claimed = open_studio_client.post("/open-studio/bookings", json=_booking_body(studio, "carol"), headers=carol)
    assert claimed.status_code == 201
    assert open_studio_client.get("/open-studio/my-waitlist", headers=carol).json() == []

    assert open_studio_client.get("/open-studio/my-bookings", headers=alice).json() == []
    assert [b["id"] for b in open_studio_client.get("/open-studio/my-bookings", headers=carol).json()] == [
        claimed.json()["id"]
    ]


def test_booking_request_validation(open_studio_client, studio, make_punch_pass, headers_for):
    alice = studio["people"]["alice"]
    headers = headers_for(alice)

    both = {**_booking_body(studio, "alice"), "customerPunchPassId": make_punch_pass(alice).id}
    response = open_studio_client.post("/open-studio/bookings", json=both, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "ENTITLEMENT_REQUIRED"

    too_long = open_studio_client.post(
        "/open-studio/bookings", json=_booking_body(studio, "alice", "10:00", "14:00"), headers=headers
    )
    assert too_long.status_code == 403
    assert too_long.json()["error"] == "BLOCK_TOO_LONG"

    outside = open_studio_client.post(
        "/open-studio/bookings", json=_booking_body(studio, "alice", "13:00", "15:00"), headers=headers
    )
    assert outside.status_code == 400
    assert outside.json()["error"] == "OUTSIDE_SESSION_WINDOW"

    malformed = open_studio_client.post(
        "/open-studio/bookings", json=_booking_body(studio, "alice", "10am", "12:00"), headers=headers
    )
    assert malformed.status_code == 422

    foreign = open_studio_client.post(
        "/open-studio/bookings", json=_booking_body(studio, "bob"), headers=headers
    )
    assert foreign.status_code == 404


def test_check_in_and_completion_rules(open_studio_client, studio, headers_for):
    alice = headers_for(studio["people"]["alice"])
    staff = headers_for(studio["people"]["staff"])
    booking = open_studio_client.post("/open-studio/bookings", json=_booking_body(studio, "alice"), headers=alice).json()

    early = open_studio_client.post(f"/open-studio/bookings/{booking['id']}/check-in", headers=alice)
    assert early.status_code == 409
    assert early.json()["error"] == "CHECK_IN_WINDOW_CLOSED"

    assert open_studio_client.post(f"/open-studio/bookings/{booking['id']}/complete", headers=alice).status_code == 403
    not_checked_in = open_studio_client.post(f"/open-studio/bookings/{booking['id']}/complete", headers=staff)
    assert not_checked_in.status_code == 409
    assert not_checked_in.json()["error"] == "INVALID_BOOKING_STATE"


def test_staff_walk_in(open_studio_client, make_user, make_resource, make_session, make_punch_pass, headers_for):
    staff = headers_for(make_user("staff", role=RoleEnum.STAFF))
    potter = make_user("potter")
    punch_pass = make_punch_pass(potter, punches=3)
    wheel = make_resource("Wheel", quantity=1)
    session = make_session(date.today(), "00:00", "23:59")
    body = {
        "customerId": potter.id,
        "sessionId": session.id,
        "resourceId": wheel.id,
        "customerPunchPassId": punch_pass.id,
    }

    forbidden = open_studio_client.post("/open-studio/walk-in", json=body, headers=headers_for(potter))
    assert forbidden.status_code == 403

    walk_in = open_studio_client.post("/open-studio/walk-in", json=body, headers=staff)
    assert walk_in.status_code == 201
    assert walk_in.json()["isWalkIn"] is True
    assert walk_in.json()["status"] == "CHECKED_IN"
    assert walk_in.json()["customerId"] == potter.id
    assert walk_in.json()["endTime"] == "23:59"

    completed = open_studio_client.post(f"/open-studio/bookings/{walk_in.json()['id']}/complete", headers=staff)
    assert completed.status_code == 200
    assert completed.json()["status"] == "COMPLETED"


def test_staff_waitlist_views(open_studio_client, studio, headers_for):
    carol = headers_for(studio["people"]["carol"])
    staff = headers_for(studio["people"]["staff"])
    entry = open_studio_client.post("/open-studio/waitlist", json=_booking_body(studio, "carol"), headers=carol).json()

    assert open_studio_client.get(
        f"/open-studio/waitlist?session_id={studio['session'].id}", headers=carol
    ).status_code == 403
    listed = open_studio_client.get(f"/open-studio/waitlist?session_id={studio['session'].id}", headers=staff)
    assert [e["id"] for e in listed.json()] == [entry["id"]]

    swept = open_studio_client.post("/open-studio/waitlist/expire", headers=staff)
    assert swept.json() == {"lapsed": [], "promoted": []}

    left = open_studio_client.delete(f"/open-studio/waitlist/{entry['id']}", headers=carol)
    assert left.status_code == 200
    assert left.json()["removalReason"] == "LEFT"
    assert open_studio_client.get(f"/open-studio/waitlist?session_id={studio['session'].id}", headers=staff).json() == []


def test_sessions_are_scoped_to_the_callers_studio(open_studio_client, studio, make_user, headers_for):
    outsider = headers_for(make_user("outsider", studio_id=2))
    assert open_studio_client.get("/open-studio/sessions", headers=outsider).json() == []
    response = open_studio_client.get(f"/open-studio/sessions/{studio['session'].id}", headers=outsider)
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


def test_health(open_studio_client):
    assert open_studio_client.get("/health").json() == {"status": "ok", "service": "open_studio"}
