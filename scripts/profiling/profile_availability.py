"""Profiling harness for the availability endpoint of the Open Studio service."""
import cProfile
import pstats
import sys
from pathlib import Path

import requests

from common.auth import issue_token

BASE_URL = "http://localhost:8002"


def exercise_availability(session_id: int, username: str, rounds: int = 50) -> None:
    headers = {"Authorization": f"Bearer {issue_token(username)}"}
    for _ in range(rounds):
        response = requests.get(f"{BASE_URL}/open-studio/sessions/{session_id}/availability", headers=headers, timeout=5)
        response.raise_for_status()


def main() -> None:
    session_id, username = int(sys.argv[1]), sys.argv[2]
    profile_path = Path(__file__).with_name("availability_profile.prof")
    with cProfile.Profile() as profiler:
        exercise_availability(session_id, username)
    profiler.dump_stats(profile_path)
    stats = pstats.Stats(str(profile_path))
    stats.sort_stats(pstats.SortKey.TIME).print_stats(10)


if __name__ == "__main__":
    main()
