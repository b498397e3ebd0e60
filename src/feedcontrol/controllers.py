"""User feed and admin console controllers built from the shared mechanisms."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Iterator, Mapping

import requests

from feedcontrol.actions import (
    ActionKind,
    ActionReconciler,
    ActionResult,
    MenuState,
    SuppressRequest,
    suppress_defaults,
)
from feedcontrol.client import BackendClient
from feedcontrol.config import ClientConfig
from feedcontrol.errors import AuthError, ControllerError, ValidationError
from feedcontrol.feed import AdvanceOutcome, FeedLoader, FeedPage
from feedcontrol.ingest import IngestGuard, RepeatingTask, TriggerOutcome, TriggerResult
from feedcontrol.models import (
    AdminCredentials,
    DedupeResult,
    FeedItem,
    Identity,
    Session,
    StatusSnapshot,
    UserCredentials,
    parse_payload,
)
from feedcontrol.resources import ResourceListEditor, rule_editor, topic_editor
from feedcontrol.session import SESSION_EXPIRED, SessionManager

__all__ = ["AdminConsoleController", "StatusLog", "StatusMessage", "UserFeedController"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StatusMessage:
    at: datetime
    text: str

    def __str__(self) -> str:
        return f"{self.at.isoformat(timespec='seconds')} {self.text}"


class StatusLog:
    """Bounded history of user-facing status lines."""

    def __init__(self, maxlen: int = 50) -> None:
        self._messages: Deque[StatusMessage] = deque(maxlen=maxlen)

    def write(self, text: str) -> StatusMessage:
        message = StatusMessage(at=datetime.now(), text=text)
        self._messages.append(message)
        return message

    @property
    def latest(self) -> str | None:
        return self._messages[-1].text if self._messages else None

    def __iter__(self) -> Iterator[StatusMessage]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)


class _Controller:
    """Lifecycle and session plumbing common to both surfaces."""

    sessions: SessionManager

    def __init__(
        self,
        config: ClientConfig,
        *,
        client: BackendClient | None = None,
        http_session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.client = client or BackendClient(config, http_session)
        self.status_log = StatusLog()

    @property
    def session(self) -> Session:
        return self.sessions.session

    @property
    def authenticated(self) -> bool:
        return self.sessions.authenticated

    @property
    def status(self) -> str | None:
        return self.status_log.latest

    def _status(self, text: str) -> None:
        self.status_log.write(text)

    def dispose(self) -> None:
        self.client.close()


class UserFeedController(_Controller):
    """Session, current feed page and per-item actions for one reader."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        client: BackendClient | None = None,
        http_session: requests.Session | None = None,
    ) -> None:
        super().__init__(config, client=client, http_session=http_session)
        self.sessions = SessionManager(self.client, Identity.USER)
        self.loader = FeedLoader(self.sessions, batch_limit=config.batch_limit)
        self.actions = ActionReconciler(self.sessions, self.loader)
        self.menus = MenuState()
        self.sessions.add_listener(self._on_session_change)

    @property
    def page(self) -> FeedPage:
        return self.loader.page

    @property
    def items(self) -> tuple[FeedItem, ...]:
        return self.loader.page.items

    @property
    def pending_ids(self) -> tuple[int, ...]:
        return self.loader.pending_ids

    @property
    def default_penalty(self) -> float:
        return self.session.hide_rule_default_penalty or self.config.default_hide_penalty

    def init(self) -> None:
        """Recover a server-side session if one exists and load the first page."""

        self.sessions.probe()
        if self.authenticated:
            self.load()
        else:
            self._status("sign in to see your feed")

    def login(self, username: str, secret: str) -> bool:
        try:
            self.sessions.login(UserCredentials(username=username, secret=secret))
        except ControllerError as exc:
            self._status(f"sign in failed: {exc}")
            return False
        self._status("signed in")
        self.load()
        return True

    def logout(self) -> None:
        self.sessions.logout()
        self._status("signed out")

    def load(self) -> int:
        try:
            count = self.loader.load_page()
        except ControllerError as exc:
            self._status(f"feed load failed: {exc}")
            return len(self.page)
        self._status(f"loaded {count} cards")
        return count

    def advance(self) -> AdvanceOutcome | None:
        """Next batch; ``None`` means a real failure, reported through the status line."""

        try:
            outcome = self.loader.advance()
        except ControllerError as exc:
            self._status(f"next batch failed: {exc}")
            return None
        self.menus.close_all()
        self._status(outcome.message)
        return outcome

    def suppress_defaults(self, item_id: int, kind: ActionKind | str) -> SuppressRequest:
        item = self.page.get(item_id)
        if item is None:
            raise ValidationError(f"item {item_id} is not displayed")
        return suppress_defaults(item, kind, self.default_penalty)

    def apply_action(
        self,
        item_id: int,
        kind: ActionKind | str,
        *,
        pattern: str | None = None,
        penalty: float | None = None,
    ) -> ActionResult:
        """Apply ``kind`` to a displayed item; it disappears only once the backend acknowledges."""

        try:
            kind = ActionKind(kind)
        except ValueError:
            message = f"unknown action: {kind}"
            self._status(f"action failed: {message}")
            return ActionResult(item_id=item_id, kind=ActionKind.HIDE, ok=False, message=message)

        request = SuppressRequest(pattern=pattern, penalty=penalty) if kind.is_suppress else None
        try:
            result = self.actions.apply(item_id, kind, request)
        except ValidationError as exc:
            self._status(f"action cancelled: {exc}")
            return ActionResult(item_id=item_id, kind=kind, ok=False, message=str(exc))
        except ControllerError as exc:
            self._status(f"action failed: {exc}")
            return ActionResult(item_id=item_id, kind=kind, ok=False, message=str(exc))

        self.menus.forget(item_id)
        self._status(result.message)
        return result

    def track_click(self, item_id: int) -> bool:
        try:
            self.actions.track_click(item_id)
        except ControllerError as exc:
            self._status(f"click tracking failed: {exc}")
            return False
        return True

    def toggle_menu(self, item_id: int) -> int | None:
        if item_id not in self.page:
            return self.menus.open_id
        return self.menus.toggle(item_id)

    def click_outside(self) -> None:
        self.menus.click_outside()

    def _on_session_change(self, session: Session, reason: str) -> None:
        if session.authenticated:
            return
        self.loader.clear()
        self.menus.close_all()
        if reason == "expired":
            self._status(SESSION_EXPIRED)


class AdminConsoleController(_Controller):
    """Admin session, topic/rule collections and the manual ingest trigger."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        client: BackendClient | None = None,
        http_session: requests.Session | None = None,
    ) -> None:
        super().__init__(config, client=client, http_session=http_session)
        self.sessions = SessionManager(
            self.client,
            Identity.ADMIN,
            secret_mode=config.auth_mode == "secret",
            configured_secret=config.admin_secret,
        )
        self.topics = topic_editor(self.sessions)
        self.rules = rule_editor(self.sessions)
        self.ingest = IngestGuard(self.sessions, on_poll_error=self._on_poll_error)
        self.poller = RepeatingTask(config.poll_interval, self.refresh_status, name="feedcontrol-status")
        self.last_dedupe: DedupeResult | None = None
        self.sessions.add_listener(self._on_session_change)

    @property
    def snapshot(self) -> StatusSnapshot | None:
        return self.ingest.snapshot

    @property
    def running(self) -> bool:
        return self.ingest.running

    @property
    def can_trigger(self) -> bool:
        return self.authenticated and not self.running

    def init(self) -> None:
        """Probe for a session and start the status poll for the controller's lifetime."""

        self._status("sign in to access admin actions")
        self.sessions.probe()
        if self.authenticated:
            self._bootstrap()
        self.poller.start()
        logger.info("Polling admin status every %.1fs", self.config.poll_interval)

    def dispose(self) -> None:
        self.poller.stop(timeout=self.config.poll_interval)
        super().dispose()

    def login(self, secret: str) -> bool:
        try:
            self.sessions.login(AdminCredentials(secret=secret))
        except ControllerError as exc:
            self._status(f"sign in failed: {exc}")
            return False
        self._status("signed in")
        self._bootstrap()
        return True

    def logout(self) -> None:
        self.sessions.logout()
        self._status("signed out")

    def refresh_status(self) -> StatusSnapshot | None:
        """One status poll; a no-op while signed out."""

        if not self.authenticated:
            return None
        return self.ingest.refresh()

    def trigger_ingest(self) -> TriggerResult:
        if not self.authenticated:
            result = TriggerResult(TriggerOutcome.FAILED, "sign in first")
        else:
            if not self.running:
                self._status("manual ingest requested (running...)")
            result = self.ingest.trigger()
        self._status(result.message)
        return result

    def dedupe(self) -> DedupeResult | None:
        try:
            payload = self.sessions.call("POST", "/dedupe", json={})
            self.last_dedupe = parse_payload(DedupeResult.model_validate, payload, "/dedupe")
        except ControllerError as exc:
            self._status(f"dedupe failed: {exc}")
            return None
        self._status(f"dedupe completed; {self.last_dedupe.dedupe_hidden_total} hidden in total")
        self.refresh_status()
        return self.last_dedupe

    def load_collection(self, editor: ResourceListEditor[Any]) -> bool:
        try:
            editor.list()
        except ControllerError as exc:
            self._status(f"{editor.name} load failed: {exc}")
            return False
        return True

    def save(self, editor: ResourceListEditor[Any], fields: Mapping[str, Any] | None = None) -> bool:
        """Create an entry from ``fields`` on top of any staged edit buffer."""

        label = editor.name[:-1]
        if not self.authenticated:
            self._status("sign in first")
            return False
        try:
            editor.submit(fields)
        except ControllerError as exc:
            self._status(f"{label} save failed: {exc}")
            return False
        self._status(f"{label} saved")
        return True

    def delete(self, editor: ResourceListEditor[Any], entry_id: int) -> bool:
        label = editor.name[:-1]
        try:
            editor.delete(entry_id)
        except ControllerError as exc:
            self._status(f"{label} delete failed: {exc}")
            return False
        self._status(f"{label} deleted")
        return True

    def edit(self, editor: ResourceListEditor[Any], entry_id: int) -> dict[str, Any] | None:
        label = editor.name[:-1]
        try:
            buffer = editor.edit(entry_id)
        except ValidationError as exc:
            self._status(str(exc))
            return None
        self._status(f"{label} loaded into editor")
        return dict(buffer.values)

    def _bootstrap(self) -> None:
        if self.load_collection(self.topics) and self.load_collection(self.rules):
            self.refresh_status()

    def _on_poll_error(self, exc: ControllerError) -> None:
        # Session loss already reported itself through the session listener.
        if isinstance(exc, AuthError):
            return
        self._status(f"status refresh failed: {exc}")

    def _on_session_change(self, session: Session, reason: str) -> None:
        if session.authenticated:
            return
        self.ingest.reset()
        self.topics.clear()
        self.rules.clear()
        self.last_dedupe = None
        if reason == "expired":
            self._status(SESSION_EXPIRED)
