"""Unit tests for rate-limit bucketing."""
from starlette.requests import Request

from common.auth import issue_token
from common.rate_limit import caller_key


def _request(headers=None, client=("203.0.113.9", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/open-studio/sessions",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestCallerKey:
    def test_authenticated_requests_are_keyed_by_customer(self):
        request = _request({"Authorization": f"Bearer {issue_token('potter', studio_id=1)}"})

        assert caller_key(request) == "user:1:potter"

    def test_customers_behind_one_ip_get_separate_buckets(self):
        first = _request({"Authorization": f"Bearer {issue_token('ann')}"})
        second = _request({"Authorization": f"Bearer {issue_token('ben')}"})

        assert caller_key(first) != caller_key(second)

    def test_anonymous_requests_fall_back_to_ip(self):
        assert caller_key(_request()) == "ip:203.0.113.9"

    def test_bad_token_falls_back_to_ip(self):
        assert caller_key(_request({"Authorization": "Bearer not-a-token"})) == "ip:203.0.113.9"
