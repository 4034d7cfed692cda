"""Shared fixtures: an in-memory stand-in for the RAD Security HTTP client."""

import pytest

from rad_security_mcp.errors import UpstreamError


class FakeClient:
    """Answers ``request`` from a route table and records every call.

    Route values may be a payload, an exception instance (raised), or a
    callable taking ``(params, json)``.
    """

    def __init__(self, routes=None, account_id="acc-1", tenant_id="ten-1"):
        self.routes = dict(routes or {})
        self.account_id = account_id
        self.tenant_id = tenant_id
        self.calls = []

    def account_path(self, suffix=""):
        return f"/accounts/{self.account_id}{suffix}"

    async def get_tenant_id(self):
        return self.tenant_id

    async def request(self, endpoint, params=None, method="GET", json=None):
        self.calls.append((method, endpoint, params, json))
        key = (method, endpoint) if (method, endpoint) in self.routes else endpoint
        if key not in self.routes:
            raise UpstreamError(404, {"message": f"no route for {endpoint}"})
        value = self.routes[key]
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(params, json)
        return value

    def endpoints(self):
        return [endpoint for _, endpoint, _, _ in self.calls]


@pytest.fixture
def make_client():
    return FakeClient
