"""Manual ingest trigger guarded against double starts, plus status polling."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from feedcontrol.errors import ControllerError, is_cooldown
from feedcontrol.models import StatusSnapshot, parse_payload
from feedcontrol.session import SessionManager

__all__ = ["IngestGuard", "RepeatingTask", "TriggerOutcome", "TriggerResult"]

logger = logging.getLogger(__name__)


class TriggerOutcome(str, Enum):
    COMPLETED = "completed"
    IGNORED = "ignored"
    COOLDOWN = "cooldown"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TriggerResult:
    outcome: TriggerOutcome
    message: str


class RepeatingTask:
    """Call ``func`` every ``interval`` seconds on a daemon thread until stopped."""

    def __init__(self, interval: float, func: Callable[[], object], *, name: str = "repeating-task") -> None:
        self.interval = interval
        self._func = func
        self._name = name
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stopped.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self._func()
            except Exception:  # noqa: BLE001 - keep the loop alive for the next tick
                logger.exception("%s tick failed", self._name)


class IngestGuard:
    """Mirror backend ingest state and let at most one manual run be in flight.

    ``running`` is ``manual_in_flight`` OR the last polled ``state.running``: the
    local flag covers the round trip before a poll can report the run.
    """

    def __init__(
        self,
        sessions: SessionManager,
        *,
        on_poll_error: Callable[[ControllerError], None] | None = None,
    ) -> None:
        self._sessions = sessions
        self._on_poll_error = on_poll_error
        self._lock = threading.Lock()
        self.manual_in_flight = False
        self.snapshot: StatusSnapshot | None = None

    @property
    def running(self) -> bool:
        backend_running = self.snapshot is not None and self.snapshot.ingest.running
        return self.manual_in_flight or backend_running

    def reset(self) -> None:
        with self._lock:
            self.manual_in_flight = False
            self.snapshot = None

    def poll(self) -> StatusSnapshot | None:
        """Fetch ``/status`` once; returns ``None`` when anonymous or the reply is stale."""

        if not self._sessions.authenticated:
            return None
        epoch = self._sessions.epoch
        payload = self._sessions.call("GET", "/status")
        snapshot = parse_payload(StatusSnapshot.from_payload, payload, "/status")
        with self._lock:
            if not self._sessions.is_current(epoch):
                logger.debug("Dropping status poll from an ended session")
                return None
            self.snapshot = snapshot
        return snapshot

    def refresh(self) -> StatusSnapshot | None:
        """Poll and hand failures to ``on_poll_error`` instead of raising."""

        try:
            return self.poll()
        except ControllerError as exc:
            logger.warning("Status refresh failed: %s", exc)
            if self._on_poll_error is not None:
                self._on_poll_error(exc)
            return None

    def trigger(self) -> TriggerResult:
        """Start a manual ingest run unless one is already known to be running."""

        with self._lock:
            if self.running:
                return TriggerResult(TriggerOutcome.IGNORED, "manual ingest ignored: already running")
            self.manual_in_flight = True

        try:
            self._sessions.call("POST", "/ingest", json={})
        except ControllerError as exc:
            if is_cooldown(exc):
                result = TriggerResult(TriggerOutcome.COOLDOWN, f"manual ingest cooldown: {exc}")
            else:
                logger.warning("Manual ingest failed: %s", exc)
                result = TriggerResult(TriggerOutcome.FAILED, f"manual ingest failed: {exc}")
        else:
            result = TriggerResult(TriggerOutcome.COMPLETED, "manual ingest completed")
        finally:
            with self._lock:
                self.manual_in_flight = False

        self.refresh()
        return result
