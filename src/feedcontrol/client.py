"""JSON-over-HTTP transport used by every controller call."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

import requests
from requests.adapters import HTTPAdapter

from feedcontrol.config import ClientConfig
from feedcontrol.errors import TransportError, error_for_status

__all__ = ["BackendClient", "CSRF_HEADER", "SECRET_HEADER", "SECRET_PARAM"]

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
SECRET_HEADER = "X-Admin-Secret"
SECRET_PARAM = "secret"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "feedcontrol/0.1",
}


class BackendClient:
    """Thin wrapper around :class:`requests.Session` speaking the backend's JSON dialect.

    Every non-2xx response is converted into a :class:`~feedcontrol.errors.ControllerError`
    whose message is the ``error`` field of the JSON body, falling back to the reason
    phrase. Nothing is retried here.
    """

    def __init__(self, config: ClientConfig, session: requests.Session | None = None) -> None:
        self.config = config
        if session is None:
            session = requests.Session()
            # Mounted without retries; escalation is decided by the controllers.
            session.mount("https://", HTTPAdapter(max_retries=0))
            session.mount("http://", HTTPAdapter(max_retries=0))
        self._session = session
        headers = getattr(self._session, "headers", None)
        if headers is not None:
            headers.update(DEFAULT_HEADERS)

    def close(self) -> None:
        close = getattr(self._session, "close", None)
        if close is not None:
            close()

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        csrf_token: str | None = None,
        secret: str | None = None,
    ) -> Dict[str, Any]:
        """Send a request and return the decoded JSON object."""

        method = method.upper()
        headers: Dict[str, str] = {}
        query: Dict[str, Any] = dict(params or {})

        if json is not None:
            headers["Content-Type"] = "application/json"
        if csrf_token and method not in SAFE_METHODS:
            headers[CSRF_HEADER] = csrf_token
        if secret:
            if self.config.secret_transport == "query":
                query[SECRET_PARAM] = secret
            else:
                headers[SECRET_HEADER] = secret

        url = self.config.url_for(path)
        try:
            response = self._session.request(
                method,
                url,
                json=json,
                params=query or None,
                headers=headers,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            logger.debug("%s %s failed: %s", method, path, exc)
            raise TransportError(str(exc)) from exc

        payload = self._decode(response)
        status = response.status_code
        if not 200 <= status < 300:
            message = ""
            if isinstance(payload, dict):
                message = str(payload.get("error") or "")
            message = message or getattr(response, "reason", "") or f"HTTP {status}"
            raise error_for_status(status, message)

        if payload is None:
            raise TransportError(f"Invalid JSON in response from {path}", status=status)
        if not isinstance(payload, dict):
            raise TransportError(f"Unexpected response shape from {path}", status=status)
        return payload

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        """Return the parsed body, ``{}`` for an empty body and ``None`` when unparseable."""

        text = response.text or ""
        if not text.strip():
            return {}
        try:
            return response.json()
        except ValueError:
            return None
