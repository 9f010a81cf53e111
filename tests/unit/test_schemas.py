"""Unit tests for schema validation."""
from datetime import date

import pytest
from pydantic import ValidationError

from common.models import BookingStatus
from common.schemas import (
    BookingCreate,
    BookingSummary,
    OpenStudioBenefits,
    ResourceCreate,
    ResourceHoldCreate,
    WalkInCreate,
)


class TestBookingSchemas:
    """Test booking request payloads."""

    def test_booking_create_accepts_camel_case(self):
        booking = BookingCreate.model_validate(
            {
                "sessionId": 4,
                "resourceId": 2,
                "startTime": "10:00",
                "endTime": "11:30",
                "customerPunchPassId": 9,
            }
        )

        assert booking.session_id == 4
        assert booking.customer_punch_pass_id == 9
        assert booking.subscription_id is None

    def test_booking_create_accepts_field_names(self):
        booking = BookingCreate(session_id=1, resource_id=1, start_time="09:00", end_time="10:00", subscription_id=3)

        assert booking.subscription_id == 3

    @pytest.mark.parametrize("value", ["9:00", "24:00", "10:60", "10-00", ""])
    def test_booking_create_rejects_bad_times(self, value):
        with pytest.raises(ValidationError):
            BookingCreate(session_id=1, resource_id=1, start_time=value, end_time="11:00")

    def test_walk_in_times_are_optional(self):
        walk_in = WalkInCreate.model_validate({"subscriptionId": 1, "sessionId": 2, "resourceId": 3})

        assert walk_in.start_time is None
        assert walk_in.end_time is None

    def test_serializes_to_camel_case(self):
        summary = BookingSummary(id=1, start_time="10:00", end_time="11:00", status=BookingStatus.RESERVED)

        assert summary.model_dump(by_alias=True) == {
            "id": 1,
            "startTime": "10:00",
            "endTime": "11:00",
            "status": BookingStatus.RESERVED,
        }


class TestResourceSchemas:
    """Test resource-related schemas."""

    def test_resource_create_valid(self):
        resource = ResourceCreate(name="Pottery Wheel", quantity=6)

        assert resource.is_active is True
        assert resource.description is None

    def test_resource_create_negative_quantity(self):
        with pytest.raises(ValidationError):
            ResourceCreate(name="Pottery Wheel", quantity=-1)

    def test_resource_create_empty_name(self):
        with pytest.raises(ValidationError):
            ResourceCreate(name="", quantity=1)

    def test_hold_defaults(self):
        hold = ResourceHoldCreate(session_date=date(2030, 3, 12), start_time="18:00", end_time="20:00", quantity=4)

        assert hold.reserve_full_capacity is True
        assert hold.allocated_quantity == 0
        assert hold.release_at is None


class TestBenefitsSchema:
    def test_all_fields_required(self):
        with pytest.raises(ValidationError):
            OpenStudioBenefits.model_validate({"maxBlockMinutes": 60})

    def test_strict_types(self):
        with pytest.raises(ValidationError):
            OpenStudioBenefits.model_validate(
                {
                    "maxBlockMinutes": 60,
                    "maxBookingsPerWeek": 2,
                    "advanceBookingDays": 7,
                    "walkInAllowed": "yes",
                    "premiumTimeAccess": False,
                }
            )
