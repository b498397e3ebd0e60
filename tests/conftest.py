from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple
from urllib.parse import urlparse

import pytest

from feedcontrol.client import BackendClient
from feedcontrol.config import ClientConfig
from feedcontrol.controllers import AdminConsoleController, UserFeedController


class DummyResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, reason: str = "OK", text: str | None = None) -> None:
        self.status_code = status_code
        self.reason = reason
        if text is not None:
            self.text = text
        else:
            self.text = "" if payload is None else json.dumps(payload)

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass
class RecordedCall:
    method: str
    path: str
    json: Any
    params: Dict[str, Any] | None
    headers: Dict[str, str]


Handler = Callable[[RecordedCall], Any]


class FakeHTTP:
    """Stand-in for ``requests.Session`` answering from a route table.

    A route holds a queue of responses; the last one repeats. Entries may be a
    :class:`DummyResponse`, an exception to raise, or a callable receiving the
    :class:`RecordedCall`.
    """

    def __init__(self) -> None:
        self.headers: Dict[str, str] = {}
        self.calls: List[RecordedCall] = []
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.closed = False

    def add(self, method: str, path: str, *responses: Any) -> "FakeHTTP":
        self.routes[(method.upper(), path)] = list(responses)
        return self

    def ok(self, method: str, path: str, payload: Any = None) -> "FakeHTTP":
        return self.add(method, path, DummyResponse({"ok": True} if payload is None else payload))

    def fail(self, method: str, path: str, status: int, error: str | None = None) -> "FakeHTTP":
        body = {"error": error} if error else None
        return self.add(method, path, DummyResponse(body, status_code=status, reason="Error"))

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        call = RecordedCall(method, urlparse(url).path, json, params, dict(headers or {}))
        self.calls.append(call)
        queue = self.routes.get((method, call.path))
        if not queue:
            return DummyResponse({"error": "not found"}, status_code=404, reason="Not Found")
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            entry = entry(call)
        return entry

    def calls_to(self, method: str, path: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.method == method and call.path == path]

    def close(self) -> None:
        self.closed = True


def feed_payload(*ids: int) -> Dict[str, Any]:
    return {
        "items": [
            {
                "id": item_id,
                "title": f"Story {item_id}",
                "url": f"https://news.example.com/{item_id}",
                "source_domain": "news.example.com",
                "score": 10.0 - item_id / 10,
                "thumbnail_url": "",
                "published_at": "2024-10-05T08:00:00Z",
            }
            for item_id in ids
        ]
    }


STATUS_IDLE = {
    "ingest": {
        "state": {
            "running": False,
            "current_source": "",
            "last_source": "searx",
            "started_at": "0001-01-01T00:00:00Z",
            "last_completed_at": "2024-10-05T08:00:00Z",
            "last_duration_ms": 5120,
            "last_error": "",
        },
        "last_message": "ingest finished",
        "last_message_at": "2024-10-05T08:00:01Z",
    },
    "counts": {"unread": 12, "seen": 3, "read": 1, "useful": 2, "hidden": 4},
    "dedupe_hidden_total": 6,
}
STATUS_RUNNING = {"ingest": {"state": {"running": True, "current_source": "searx"}}, "counts": {}}

USER_LOGIN = {"ok": True, "csrf_token": "user-csrf", "hide_rule_default_penalty": 12}
ADMIN_LOGIN = {"ok": True, "csrf_token": "admin-csrf", "hide_rule_default_penalty": 12}


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(base_url="http://backend.test", poll_interval=60)


@pytest.fixture
def http() -> FakeHTTP:
    return FakeHTTP()


@pytest.fixture
def client(config: ClientConfig, http: FakeHTTP) -> BackendClient:
    return BackendClient(config, http)


@pytest.fixture
def user(config: ClientConfig, http: FakeHTTP) -> UserFeedController:
    http.ok("POST", "/api/login", USER_LOGIN)
    controller = UserFeedController(config, http_session=http)
    yield controller
    controller.dispose()


@pytest.fixture
def admin(config: ClientConfig, http: FakeHTTP) -> AdminConsoleController:
    http.ok("POST", "/admin/api/login", ADMIN_LOGIN)
    controller = AdminConsoleController(config, http_session=http)
    yield controller
    controller.dispose()
