import json

import pytest

from superset_py.client import SupersetClient
from superset_py.models import Credentials

BASE_URL = "http://superset.test"


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body=None,
        *,
        text: str | None = None,
        headers: dict | None = None,
        cookies: dict | None = None,
        reason: str = "OK",
    ):
        self.status_code = status_code
        self.reason = reason
        self._body = body
        self.text = json.dumps(body) if body is not None else (text or "")
        self.headers = headers or {}
        self.cookies = cookies or {}

    def json(self):
        if self._body is None:
            return json.loads(self.text)
        return self._body


def _as_response(value) -> FakeResponse:
    if isinstance(value, FakeResponse):
        return value
    if isinstance(value, tuple):
        return FakeResponse(*value)
    return FakeResponse(200, value)


class FakeSession:
    """Routes ``"METHOD path"`` to canned responses and records every call.

    A route value may be a body (served with 200), a ``(status, body)``
    tuple, a :class:`FakeResponse`, or a callable taking the recorded call.
    Login and CSRF succeed unless overridden.
    """

    def __init__(self, routes: dict | None = None):
        self.routes = {
            "POST api/v1/security/login": {"access_token": "tok"},
            "GET api/v1/security/csrf_token": FakeResponse(
                200, {"result": "csrf"}, cookies={"session": "sess"},
            ),
        }
        self.routes.update(routes or {})
        self.calls: list[dict] = []

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        path = url[len(BASE_URL):].strip("/")
        call = {
            "method": method,
            "path": path,
            "headers": headers or {},
            "params": params,
            "json": json,
        }
        self.calls.append(call)
        handler = self.routes.get(f"{method} {path}")
        if handler is None:
            return FakeResponse(404, {"message": "Not found"}, reason="NOT FOUND")
        if callable(handler):
            return _as_response(handler(call))
        return _as_response(handler)

    def paths(self, method: str | None = None) -> list[str]:
        return [
            c["path"] for c in self.calls if method is None or c["method"] == method
        ]

    def count(self, method: str, path: str) -> int:
        return sum(1 for c in self.calls if c["method"] == method and c["path"] == path)


@pytest.fixture
def make_client():
    def _make(routes=None, *, access_token=None, username="admin", password="secret"):
        session = FakeSession(routes)
        creds = Credentials(
            base_url=BASE_URL,
            username=None if access_token else username,
            password=None if access_token else password,
            access_token=access_token,
        )
        return SupersetClient(creds, session=session, timeout=5), session

    return _make


@pytest.fixture
def fake_response():
    return FakeResponse
