"""Tests for the routes in :mod:`feedcontrol.api.routes`."""

from __future__ import annotations

from fastapi.testclient import TestClient

from feedcontrol.api.app import create_app
from feedcontrol.controllers import AdminConsoleController, UserFeedController

from conftest import STATUS_IDLE, DummyResponse, FakeHTTP, feed_payload


def _client(user: UserFeedController, admin: AdminConsoleController) -> TestClient:
    return TestClient(create_app(user=user, admin=admin))


def test_feed_routes_require_sign_in(user: UserFeedController, admin: AdminConsoleController) -> None:
    with _client(user, admin) as client:
        session = client.get("/api/feed/session")
        response = client.post("/api/feed/next")

    assert session.status_code == 200
    assert session.json()["authenticated"] is False
    assert session.json()["status"] == "sign in to see your feed"
    assert response.status_code == 401


def test_login_and_next_batch(user: UserFeedController, admin: AdminConsoleController, http: FakeHTTP) -> None:
    http.add("GET", "/api/feed", DummyResponse(feed_payload(1, 2)), DummyResponse(feed_payload(3)))
    http.ok("POST", "/api/feed/seen")

    with _client(user, admin) as client:
        login = client.post("/api/feed/login", json={"username": "reader", "secret": "pw"})
        page = client.get("/api/feed")
        advanced = client.post("/api/feed/next")

    assert login.status_code == 200
    assert login.json()["identity"] == "user"
    assert page.json()["pending_ids"] == [1, 2]
    assert advanced.status_code == 200
    payload = advanced.json()
    assert payload["pending_ids"] == [3]
    assert payload["empty"] is False
    assert payload["status"] == "loaded 1 cards"


def test_failed_login_returns_401(user: UserFeedController, admin: AdminConsoleController, http: FakeHTTP) -> None:
    http.fail("POST", "/api/login", 401, "invalid credentials")

    with _client(user, admin) as client:
        response = client.post("/api/feed/login", json={"username": "reader", "secret": "bad"})

    assert response.status_code == 401
    assert response.json()["detail"] == "sign in failed: invalid credentials"


def test_action_route_removes_item(user: UserFeedController, admin: AdminConsoleController, http: FakeHTTP) -> None:
    http.ok("GET", "/api/feed", feed_payload(4, 5))
    http.ok("POST", "/api/articles/action")

    with _client(user, admin) as client:
        client.post("/api/feed/login", json={"username": "reader", "secret": "pw"})
        response = client.post("/api/feed/items/4/action", json={"action": "hide"})
        page = client.get("/api/feed")

    assert response.json()["ok"] is True
    assert page.json()["pending_ids"] == [5]


def test_suppress_defaults_and_menu(user: UserFeedController, admin: AdminConsoleController, http: FakeHTTP) -> None:
    http.ok("GET", "/api/feed", feed_payload(4, 5))

    with _client(user, admin) as client:
        client.post("/api/feed/login", json={"username": "reader", "secret": "pw"})
        defaults = client.get("/api/feed/items/5/suppress-defaults", params={"kind": "suppress-domain"})
        missing = client.get("/api/feed/items/99/suppress-defaults")
        opened = client.post("/api/feed/items/4/menu")
        switched = client.post("/api/feed/items/5/menu")
        closed = client.post("/api/feed/menu/close")

    assert defaults.json() == {"pattern": "news.example.com", "penalty": 12.0}
    assert missing.status_code == 404
    assert opened.json()["open_menu"] == 4
    assert switched.json()["open_menu"] == 5
    assert closed.json()["open_menu"] is None


def test_admin_ingest_and_status(user: UserFeedController, admin: AdminConsoleController, http: FakeHTTP) -> None:
    http.ok("GET", "/admin/api/topics", {"items": []}).ok("GET", "/admin/api/rules", {"items": []})
    http.ok("GET", "/admin/api/status", STATUS_IDLE)
    http.fail("POST", "/admin/api/ingest", 409, "ingestion just completed; wait a few seconds before starting again")

    with _client(user, admin) as client:
        client.post("/api/admin/login", json={"secret": "s3cret"})
        triggered = client.post("/api/admin/ingest")
        status = client.get("/api/admin/status")

    assert triggered.json()["outcome"] == "cooldown"
    payload = status.json()
    assert payload["running"] is False
    assert payload["snapshot"]["counts"]["unread"] == 12


def test_admin_collection_routes(user: UserFeedController, admin: AdminConsoleController, http: FakeHTTP) -> None:
    http.ok("GET", "/admin/api/topics", {"items": [{"id": 1, "query": "rust", "weight": 2, "enabled": True}]})
    http.ok("GET", "/admin/api/rules", {"items": []})
    http.ok("GET", "/admin/api/status", STATUS_IDLE)
    http.ok("POST", "/admin/api/rules")

    with _client(user, admin) as client:
        client.post("/api/admin/login", json={"secret": "s3cret"})
        topics = client.get("/api/admin/topics")
        edited = client.post("/api/admin/topics/1/edit")
        created = client.post("/api/admin/rules", json={"pattern": "sponsored", "penalty": 8})
        rejected = client.post("/api/admin/rules", json={"pattern": ""})
        unknown = client.get("/api/admin/widgets")

    assert topics.json()["items"][0]["query"] == "rust"
    assert edited.json()["buffer"] == {"query": "rust", "weight": 2.0, "enabled": True}
    assert created.status_code == 200
    assert created.json()["status"] == "rule saved"
    assert http.calls_to("POST", "/admin/api/rules")[0].json == {"pattern": "sponsored", "penalty": 8, "enabled": True}
    assert rejected.status_code == 400
    assert unknown.status_code == 404


def test_menu_routes_require_sign_in(user: UserFeedController, admin: AdminConsoleController) -> None:
    with _client(user, admin) as client:
        toggled = client.post("/api/feed/items/1/menu")
        closed = client.post("/api/feed/menu/close")

    assert toggled.status_code == 401
    assert closed.status_code == 401


def test_malformed_feed_returns_502(user: UserFeedController, admin: AdminConsoleController, http: FakeHTTP) -> None:
    http.add("GET", "/api/feed", DummyResponse(feed_payload(1)), DummyResponse({"items": [{"id": None}]}))
    http.ok("POST", "/api/feed/seen")

    with _client(user, admin) as client:
        client.post("/api/feed/login", json={"username": "reader", "secret": "pw"})
        response = client.post("/api/feed/next")

    assert response.status_code == 502
    assert response.json()["detail"].startswith("next batch failed: unexpected response from /feed")
