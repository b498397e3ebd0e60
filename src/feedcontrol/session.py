"""Authentication lifecycle shared by the user and admin controllers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Union

from feedcontrol.client import BackendClient
from feedcontrol.errors import AuthError, ControllerError, ValidationError
from feedcontrol.models import AdminCredentials, Identity, Session, UserCredentials, parse_payload

__all__ = ["SessionManager", "SessionListener", "SESSION_EXPIRED"]

logger = logging.getLogger(__name__)

SESSION_EXPIRED = "session expired; sign in again"

Credentials = Union[UserCredentials, AdminCredentials]
SessionListener = Callable[[Session, str], None]

_PREFIXES = {Identity.USER: "/api", Identity.ADMIN: "/admin/api"}


class SessionManager:
    """Track authenticated/anonymous state and gate every backend call.

    Transitions are ``anonymous -> authenticated`` (login, probe) and
    ``authenticated -> anonymous`` (logout, 401/403). Each transition bumps an
    epoch; calls remember the epoch they were sent under so that several
    concurrent 401/403 responses only force a single logout, and so that
    responses arriving after a logout can be recognised as stale.
    """

    def __init__(
        self,
        client: BackendClient,
        identity: Identity,
        *,
        secret_mode: bool = False,
        configured_secret: str | None = None,
    ) -> None:
        self._client = client
        self.identity = identity
        self.prefix = _PREFIXES[identity]
        self.secret_mode = secret_mode
        self._configured_secret = (configured_secret or "").strip() or None
        self._secret: str | None = None
        self._session = Session.anonymous()
        self._epoch = 0
        self._lock = threading.Lock()
        self._listeners: List[SessionListener] = []

    @property
    def session(self) -> Session:
        return self._session

    @property
    def authenticated(self) -> bool:
        return self._session.authenticated

    @property
    def epoch(self) -> int:
        return self._epoch

    def add_listener(self, listener: SessionListener) -> None:
        """Register ``listener(session, reason)`` to run after every transition."""

        self._listeners.append(listener)

    def is_current(self, epoch: int) -> bool:
        """Return ``True`` while the session that issued ``epoch`` is still active."""

        return self._session.authenticated and epoch == self._epoch

    def login(self, credentials: Credentials) -> Session:
        """Authenticate with ``credentials``; raises :class:`AuthError` when rejected."""

        secret = credentials.secret.strip()
        if not secret:
            raise ValidationError("enter a secret first")
        if isinstance(credentials, UserCredentials) and not credentials.username.strip():
            raise ValidationError("enter a username first")

        if self.secret_mode:
            return self._establish(Session(authenticated=True, identity=self.identity), "login", secret=secret)

        path = f"{self.prefix}/login"
        payload = self._client.request("POST", path, json=credentials.model_dump())
        return self._establish(parse_payload(self._session_from, payload, path), "login")

    def probe(self) -> Session:
        """Recover an existing server-side session without credentials.

        Failure is the normal cold-start outcome and leaves the state anonymous
        without raising.
        """

        if self.secret_mode:
            if self._configured_secret:
                return self._establish(
                    Session(authenticated=True, identity=self.identity),
                    "probe",
                    secret=self._configured_secret,
                )
            return self._session

        path = f"{self.prefix}/session"
        try:
            session = parse_payload(self._session_from, self._client.request("GET", path), path)
        except ControllerError as exc:
            logger.debug("No %s session to recover: %s", self.identity.value, exc)
            if self._session.authenticated:
                self.expire(self._epoch)
            return self._session
        return self._establish(session, "probe")

    def logout(self) -> None:
        """Sign out; local state is cleared even when the backend call fails."""

        session = self._session
        if session.authenticated and not self.secret_mode:
            try:
                self._client.request(
                    "POST",
                    f"{self.prefix}/logout",
                    json={},
                    csrf_token=session.csrf_token or None,
                )
            except ControllerError as exc:
                logger.warning("Logout request failed, clearing local session anyway: %s", exc)

        with self._lock:
            was_authenticated = self._session.authenticated
            self._reset()
        if was_authenticated:
            self._notify("logout")

    def expire(self, epoch: int) -> bool:
        """Force the session issued under ``epoch`` back to anonymous.

        Returns ``False`` when that session has already ended, which is how
        concurrent failures collapse into a single transition.
        """

        with self._lock:
            if not self.is_current(epoch):
                return False
            self._reset()
        logger.info("%s session expired", self.identity.value.capitalize())
        self._notify("expired")
        return True

    def call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """Send an authenticated request relative to this identity's API prefix."""

        with self._lock:
            session = self._session
            epoch = self._epoch
            secret = self._secret
        if not session.authenticated:
            raise AuthError("sign in first")

        try:
            return self._client.request(
                method,
                f"{self.prefix}{path}",
                csrf_token=session.csrf_token or None,
                secret=secret,
                **kwargs,
            )
        except AuthError as exc:
            logger.debug("%s %s rejected (%s): %s", method, path, exc.status, exc)
            self.expire(epoch)
            raise AuthError(SESSION_EXPIRED, status=exc.status) from exc

    def _session_from(self, payload: Dict[str, Any]) -> Session:
        penalty = payload.get("hide_rule_default_penalty")
        return Session(
            authenticated=True,
            csrf_token=str(payload.get("csrf_token") or ""),
            identity=self.identity,
            hide_rule_default_penalty=float(penalty) if penalty else None,
        )

    def _establish(self, session: Session, reason: str, *, secret: str | None = None) -> Session:
        with self._lock:
            self._session = session
            self._secret = secret
            self._epoch += 1
        self._notify(reason)
        return session

    def _reset(self) -> None:
        self._session = Session.anonymous()
        self._secret = None
        self._epoch += 1

    def _notify(self, reason: str) -> None:
        session = self._session
        for listener in list(self._listeners):
            listener(session, reason)
