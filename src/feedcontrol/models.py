"""Domain models exchanged with the ranking backend."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, BeforeValidator, Field
from pydantic import ValidationError as SchemaError

from feedcontrol.errors import TransportError

T = TypeVar("T")


def _blank_to_none(value: Any) -> Any:
    # The backend serialises unset timestamps as the zero time.
    if value in ("", None) or (isinstance(value, str) and value.startswith("0001-01-01")):
        return None
    return value


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalTimestamp = Annotated[Optional[datetime], BeforeValidator(_blank_to_none)]


class Identity(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Session(BaseModel):
    """Local view of the authentication state held by one controller."""

    authenticated: bool = False
    csrf_token: str = ""
    identity: Optional[Identity] = None
    hide_rule_default_penalty: Optional[float] = None

    @classmethod
    def anonymous(cls) -> "Session":
        return cls()


class UserCredentials(BaseModel):
    username: str = ""
    secret: str = ""


class AdminCredentials(BaseModel):
    secret: str = ""


class FeedItem(BaseModel):
    """A ranked content item as returned by the feed endpoint."""

    id: int
    title: str = ""
    url: str = ""
    source_domain: str = ""
    score: float = 0.0
    thumbnail_url: OptionalText = None
    published_at: OptionalTimestamp = None


class Topic(BaseModel):
    id: Optional[int] = None
    query: str = ""
    weight: float = 1
    enabled: bool = True


class Rule(BaseModel):
    id: Optional[int] = None
    pattern: str = ""
    penalty: float = 5
    enabled: bool = True


class IngestState(BaseModel):
    """Mirror of the backend ingest scheduler snapshot."""

    running: bool = False
    current_source: OptionalText = None
    last_source: OptionalText = None
    started_at: OptionalTimestamp = None
    last_completed_at: OptionalTimestamp = None
    last_duration_ms: int = 0
    last_error: OptionalText = None
    last_message: OptionalText = None
    last_message_at: OptionalTimestamp = None

    @property
    def source(self) -> Optional[str]:
        return self.current_source or self.last_source


class StatusCounts(BaseModel):
    unread: int = 0
    seen: int = 0
    read: int = 0
    useful: int = 0
    hidden: int = 0


class StatusSnapshot(BaseModel):
    """One poll of ``/admin/api/status``."""

    ingest: IngestState = Field(default_factory=IngestState)
    counts: StatusCounts = Field(default_factory=StatusCounts)
    dedupe_hidden_total: int = 0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StatusSnapshot":
        ingest = payload.get("ingest") or {}
        state = dict(ingest.get("state") or {})
        state["last_message"] = ingest.get("last_message")
        state["last_message_at"] = ingest.get("last_message_at")
        return cls(
            ingest=IngestState.model_validate(state),
            counts=StatusCounts.model_validate(payload.get("counts") or {}),
            dedupe_hidden_total=int(payload.get("dedupe_hidden_total") or 0),
        )


class DedupeResult(BaseModel):
    stats: Dict[str, Any] = Field(default_factory=dict)
    dedupe_hidden_total: int = 0


class FeedPageResponse(BaseModel):
    items: List[FeedItem] = Field(default_factory=list)


def parse_payload(build: Callable[[Dict[str, Any]], T], payload: Dict[str, Any], path: str) -> T:
    """Run ``build`` over a decoded response; malformed bodies become :class:`TransportError`."""

    try:
        return build(payload)
    except (SchemaError, TypeError, ValueError, AttributeError) as exc:
        raise TransportError(f"unexpected response from {path}: {exc}") from exc
