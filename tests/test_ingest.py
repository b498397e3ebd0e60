from __future__ import annotations

import threading

import pytest

from feedcontrol.client import BackendClient
from feedcontrol.errors import ControllerError
from feedcontrol.ingest import IngestGuard, RepeatingTask, TriggerOutcome
from feedcontrol.models import AdminCredentials, Identity
from feedcontrol.session import SessionManager

from conftest import ADMIN_LOGIN, STATUS_IDLE, STATUS_RUNNING, DummyResponse, FakeHTTP


@pytest.fixture
def sessions(client: BackendClient, http: FakeHTTP) -> SessionManager:
    http.ok("POST", "/admin/api/login", ADMIN_LOGIN)
    manager = SessionManager(client, Identity.ADMIN)
    manager.login(AdminCredentials(secret="s3cret"))
    return manager


@pytest.fixture
def poll_errors() -> list[ControllerError]:
    return []


@pytest.fixture
def guard(sessions: SessionManager, poll_errors: list[ControllerError]) -> IngestGuard:
    return IngestGuard(sessions, on_poll_error=poll_errors.append)


def test_poll_parses_status_snapshot(guard: IngestGuard, http: FakeHTTP) -> None:
    http.ok("GET", "/admin/api/status", STATUS_IDLE)

    snapshot = guard.poll()

    assert snapshot is guard.snapshot
    assert not snapshot.ingest.running
    assert snapshot.ingest.started_at is None
    assert snapshot.ingest.current_source is None
    assert snapshot.ingest.source == "searx"
    assert snapshot.ingest.last_message == "ingest finished"
    assert snapshot.counts.unread == 12
    assert snapshot.dedupe_hidden_total == 6


def test_trigger_twice_in_one_round_trip_sends_one_request(guard: IngestGuard, http: FakeHTTP) -> None:
    second: list = []

    def ingest(call):
        second.append(guard.trigger())
        return DummyResponse({"ok": True})

    http.add("POST", "/admin/api/ingest", ingest)
    http.ok("GET", "/admin/api/status", STATUS_IDLE)

    first = guard.trigger()

    assert first.outcome is TriggerOutcome.COMPLETED
    assert [result.outcome for result in second] == [TriggerOutcome.IGNORED]
    assert second[0].message == "manual ingest ignored: already running"
    assert len(http.calls_to("POST", "/admin/api/ingest")) == 1


def test_backend_running_state_blocks_trigger(guard: IngestGuard, http: FakeHTTP) -> None:
    http.ok("GET", "/admin/api/status", STATUS_RUNNING)
    guard.poll()

    result = guard.trigger()

    assert result.outcome is TriggerOutcome.IGNORED
    assert guard.running
    assert http.calls_to("POST", "/admin/api/ingest") == []


def test_cooldown_is_reported_distinctly(guard: IngestGuard, http: FakeHTTP) -> None:
    http.fail("POST", "/admin/api/ingest", 409, "ingestion just completed; wait a few seconds before starting again")
    http.ok("GET", "/admin/api/status", STATUS_IDLE)

    result = guard.trigger()

    assert result.outcome is TriggerOutcome.COOLDOWN
    assert result.message.startswith("manual ingest cooldown:")
    assert not guard.manual_in_flight


def test_failure_clears_flag_and_repolls(guard: IngestGuard, http: FakeHTTP) -> None:
    http.fail("POST", "/admin/api/ingest", 500, "searx unreachable")
    http.ok("GET", "/admin/api/status", STATUS_IDLE)

    result = guard.trigger()

    assert result.outcome is TriggerOutcome.FAILED
    assert result.message == "manual ingest failed: searx unreachable"
    assert not guard.manual_in_flight
    assert len(http.calls_to("GET", "/admin/api/status")) == 1
    assert guard.snapshot is not None


def test_in_flight_flag_is_visible_during_the_call(guard: IngestGuard, http: FakeHTTP) -> None:
    observed: list[bool] = []

    def ingest(call):
        observed.append(guard.running)
        return DummyResponse({"ok": True})

    http.add("POST", "/admin/api/ingest", ingest)
    http.ok("GET", "/admin/api/status", STATUS_IDLE)

    guard.trigger()

    assert observed == [True]
    assert not guard.running


def test_poll_rejection_logs_out_once(
    guard: IngestGuard, sessions: SessionManager, http: FakeHTTP, poll_errors: list[ControllerError]
) -> None:
    http.fail("GET", "/admin/api/status", 401, "unauthorized")
    transitions: list[str] = []
    sessions.add_listener(lambda session, reason: transitions.append(reason))

    assert guard.refresh() is None
    assert guard.refresh() is None

    assert not sessions.authenticated
    assert transitions == ["expired"]
    assert len(http.calls_to("GET", "/admin/api/status")) == 1
    assert len(poll_errors) == 1


def test_other_poll_failures_are_reported_and_keep_session(
    guard: IngestGuard, sessions: SessionManager, http: FakeHTTP, poll_errors: list[ControllerError]
) -> None:
    http.fail("GET", "/admin/api/status", 500, "database locked")

    guard.refresh()

    assert sessions.authenticated
    assert [str(exc) for exc in poll_errors] == ["database locked"]


def test_repeating_task_runs_until_stopped() -> None:
    ticks = threading.Semaphore(0)
    task = RepeatingTask(0.01, ticks.release, name="test-poll")

    task.start()
    try:
        assert ticks.acquire(timeout=2)
        assert ticks.acquire(timeout=2)
        assert task.running
    finally:
        task.stop(timeout=2)

    assert not task.running


def test_repeating_task_survives_failing_ticks() -> None:
    calls: list[int] = []
    done = threading.Event()

    def tick() -> None:
        calls.append(1)
        if len(calls) >= 2:
            done.set()
        raise RuntimeError("boom")

    task = RepeatingTask(0.01, tick)
    task.start()
    try:
        assert done.wait(timeout=2)
    finally:
        task.stop(timeout=2)


def test_status_from_an_ended_session_is_dropped(guard: IngestGuard, sessions: SessionManager, http: FakeHTTP) -> None:
    def status_then_logout(call):
        sessions.logout()
        return DummyResponse(STATUS_RUNNING)

    http.ok("POST", "/admin/api/logout")
    http.add("GET", "/admin/api/status", status_then_logout)

    assert guard.poll() is None
    assert guard.snapshot is None
    assert not guard.running


def test_malformed_status_is_reported_as_poll_error(
    guard: IngestGuard, sessions: SessionManager, http: FakeHTTP, poll_errors: list[ControllerError]
) -> None:
    http.ok("GET", "/admin/api/status", {"ingest": "broken", "counts": {}})

    assert guard.refresh() is None

    assert sessions.authenticated
    assert guard.snapshot is None
    assert len(poll_errors) == 1
    assert str(poll_errors[0]).startswith("unexpected response from /status")
