#!/usr/bin/env python3
"""Script to add the indexes the booking and waitlist queries rely on."""
from sqlalchemy import create_engine, text

from common.config import get_settings

INDEXES = [
    # Capacity checks and availability views
    "CREATE INDEX IF NOT EXISTS idx_bookings_resource_session_status ON bookings (resource_id, session_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_bookings_customer_id ON bookings (customer_id);",
    # Weekly usage
    "CREATE INDEX IF NOT EXISTS idx_bookings_subscription_reserved_at ON bookings (subscription_id, reserved_at);",
    # Class holds for a session
    "CREATE INDEX IF NOT EXISTS idx_resource_holds_resource_date ON resource_holds (resource_id, session_date);",
    # Waitlist groups
    "CREATE INDEX IF NOT EXISTS idx_waitlist_group_active ON waitlist_entries (resource_id, session_id, start_time, removed_at);",
    "CREATE INDEX IF NOT EXISTS idx_waitlist_customer_id ON waitlist_entries (customer_id);",
    # Session calendar
    "CREATE INDEX IF NOT EXISTS idx_studio_sessions_studio_date ON studio_sessions (studio_id, session_date);",
]


def add_indexes():
    engine = create_engine(get_settings().database_url)
    with engine.begin() as conn:
        for statement in INDEXES:
            conn.execute(text(statement))
    print(f"{len(INDEXES)} indexes ensured.")


if __name__ == "__main__":
    add_indexes()
