"""Business-rule failures and their HTTP representation."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    NO_ACTIVE_SUBSCRIPTION = "NO_ACTIVE_SUBSCRIPTION"
    WEEKLY_LIMIT_REACHED = "WEEKLY_LIMIT_REACHED"
    BLOCK_TOO_LONG = "BLOCK_TOO_LONG"
    WALK_IN_NOT_ALLOWED = "WALK_IN_NOT_ALLOWED"
    PASS_EXHAUSTED = "PASS_EXHAUSTED"
    PASS_EXPIRED = "PASS_EXPIRED"
    ALREADY_WAITLISTED = "ALREADY_WAITLISTED"
    NOT_FOUND = "NOT_FOUND"
    CHECK_IN_WINDOW_CLOSED = "CHECK_IN_WINDOW_CLOSED"
    INVALID_BOOKING_STATE = "INVALID_BOOKING_STATE"
    INVALID_TIME_RANGE = "INVALID_TIME_RANGE"
    OUTSIDE_SESSION_WINDOW = "OUTSIDE_SESSION_WINDOW"
    ENTITLEMENT_REQUIRED = "ENTITLEMENT_REQUIRED"
    BENEFITS_INVALID = "BENEFITS_INVALID"
    ADVANCE_WINDOW_EXCEEDED = "ADVANCE_WINDOW_EXCEEDED"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    RESOURCE_NAME_TAKEN = "RESOURCE_NAME_TAKEN"


STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_TIME_RANGE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.OUTSIDE_SESSION_WINDOW: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ENTITLEMENT_REQUIRED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.RESOURCE_NAME_TAKEN: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NO_ACTIVE_SUBSCRIPTION: status.HTTP_403_FORBIDDEN,
    ErrorCode.WEEKLY_LIMIT_REACHED: status.HTTP_403_FORBIDDEN,
    ErrorCode.BLOCK_TOO_LONG: status.HTTP_403_FORBIDDEN,
    ErrorCode.WALK_IN_NOT_ALLOWED: status.HTTP_403_FORBIDDEN,
    ErrorCode.PASS_EXHAUSTED: status.HTTP_403_FORBIDDEN,
    ErrorCode.PASS_EXPIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.BENEFITS_INVALID: status.HTTP_403_FORBIDDEN,
    ErrorCode.ADVANCE_WINDOW_EXCEEDED: status.HTTP_403_FORBIDDEN,
    ErrorCode.ACCOUNT_SUSPENDED: status.HTTP_403_FORBIDDEN,
    ErrorCode.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_WAITLISTED: status.HTTP_409_CONFLICT,
    ErrorCode.CHECK_IN_WINDOW_CLOSED: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_BOOKING_STATE: status.HTTP_409_CONFLICT,
}

DEFAULT_MESSAGES = {
    ErrorCode.SLOT_UNAVAILABLE: "The requested time is no longer available on this resource",
    ErrorCode.NO_ACTIVE_SUBSCRIPTION: "An active membership subscription is required",
    ErrorCode.WEEKLY_LIMIT_REACHED: "Weekly booking limit reached for this membership",
    ErrorCode.BLOCK_TOO_LONG: "Requested block is longer than your membership allows",
    ErrorCode.WALK_IN_NOT_ALLOWED: "Walk-ins are not included in this membership",
    ErrorCode.PASS_EXHAUSTED: "This punch pass has no punches remaining",
    ErrorCode.PASS_EXPIRED: "This punch pass has expired",
    ErrorCode.ALREADY_WAITLISTED: "Already on the waitlist for this slot",
    ErrorCode.NOT_FOUND: "Not found",
    ErrorCode.CHECK_IN_WINDOW_CLOSED: "Check-in is not open for this booking",
    ErrorCode.INVALID_BOOKING_STATE: "Booking cannot move to the requested state",
    ErrorCode.INVALID_TIME_RANGE: "End time must be after start time",
    ErrorCode.OUTSIDE_SESSION_WINDOW: "Requested time falls outside the session",
    ErrorCode.ENTITLEMENT_REQUIRED: "Provide exactly one of subscriptionId or customerPunchPassId",
    ErrorCode.BENEFITS_INVALID: "Membership benefits are not configured for Open Studio",
    ErrorCode.ADVANCE_WINDOW_EXCEEDED: "Session is too far ahead to book with this membership",
    ErrorCode.ACCOUNT_SUSPENDED: "Your account is currently suspended",
    ErrorCode.RESOURCE_NAME_TAKEN: "A resource with this name already exists",
}


class OpenStudioError(Exception):
    """An expected business outcome reported to the caller with a reason code."""

    def __init__(self, code: ErrorCode, message: Optional[str] = None) -> None:
        self.code = code
        self.message = message or DEFAULT_MESSAGES.get(code, code.value)
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE.get(self.code, status.HTTP_400_BAD_REQUEST)


def open_studio_error_handler(request: Request, exc: OpenStudioError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code.value)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code.value, "detail": exc.message})


def add_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OpenStudioError, open_studio_error_handler)
