#!/usr/bin/env python3
"""Fire concurrent bookings for the same slot at a running Open Studio service.

Usage: booking_contention.py SESSION_ID RESOURCE_ID START END USERNAME:PUNCH_PASS_ID [...]

Every caller books the same window; with one free unit exactly one request
should come back 201 and the rest 409 SLOT_UNAVAILABLE.
"""
import sys
from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import requests

from common.auth import issue_token

BASE_URL = "http://localhost:8002"


def attempt(session_id: int, resource_id: int, start: str, end: str, username: str, punch_pass_id: int) -> str:
    response = requests.post(
        f"{BASE_URL}/open-studio/bookings",
        json={
            "sessionId": session_id,
            "resourceId": resource_id,
            "startTime": start,
            "endTime": end,
            "customerPunchPassId": punch_pass_id,
        },
        headers={"Authorization": f"Bearer {issue_token(username)}"},
        timeout=60,
    )
    if response.status_code == 201:
        return "created"
    return response.json().get("error", str(response.status_code))


def main() -> None:
    session_id, resource_id, start, end = int(sys.argv[1]), int(sys.argv[2]), sys.argv[3], sys.argv[4]
    callers = [arg.split(":") for arg in sys.argv[5:]]
    with ThreadPoolExecutor(max_workers=len(callers)) as pool:
        outcomes = list(
            pool.map(lambda caller: attempt(session_id, resource_id, start, end, caller[0], int(caller[1])), callers)
        )
    for outcome, count in Counter(outcomes).most_common():
        print(f"{outcome}: {count}")


if __name__ == "__main__":
    main()
