"""Per-item feedback actions and the menu state around them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel

from feedcontrol.errors import ValidationError
from feedcontrol.feed import FeedLoader, FeedPage
from feedcontrol.models import FeedItem
from feedcontrol.session import SessionManager

__all__ = [
    "ActionKind",
    "ActionReconciler",
    "ActionResult",
    "MenuState",
    "SuppressRequest",
    "apply_action_result",
    "suppress_defaults",
]


class ActionKind(str, Enum):
    USEFUL = "useful"
    HIDE = "hide"
    SUPPRESS_ITEM = "suppress-item"
    SUPPRESS_DOMAIN = "suppress-domain"

    @property
    def is_suppress(self) -> bool:
        return self in (ActionKind.SUPPRESS_ITEM, ActionKind.SUPPRESS_DOMAIN)


# Wire names understood by ``/api/articles/action``.
_FEEDBACK_ACTIONS = {ActionKind.USEFUL: "up", ActionKind.HIDE: "down"}


class SuppressRequest(BaseModel):
    """Pattern and penalty submitted with a suppress action."""

    pattern: str | None = None
    penalty: float | None = None

    def checked(self) -> "SuppressRequest":
        """Return a normalised copy or raise :class:`ValidationError` for degenerate input."""

        pattern = (self.pattern or "").strip()
        if not pattern:
            raise ValidationError("a pattern is required to suppress an item")
        if self.penalty is None or self.penalty <= 0:
            raise ValidationError("penalty must be a positive number")
        return SuppressRequest(pattern=pattern, penalty=self.penalty)


@dataclass(frozen=True, slots=True)
class ActionResult:
    item_id: int
    kind: ActionKind
    ok: bool
    message: str = ""


def apply_action_result(page: FeedPage, item_id: int, result: ActionResult) -> FeedPage:
    """Return the page after ``result``; only an acknowledged action removes the item."""

    if not result.ok or result.item_id != item_id or item_id not in page:
        return page
    return page.without(item_id)


def suppress_defaults(item: FeedItem, kind: ActionKind | str, default_penalty: float) -> SuppressRequest:
    """Prefill a suppress request from the item title or its source domain."""

    kind = ActionKind(kind)
    if kind is ActionKind.SUPPRESS_DOMAIN:
        pattern = item.source_domain
    elif kind is ActionKind.SUPPRESS_ITEM:
        pattern = item.title
    else:
        raise ValidationError(f"{kind.value} does not take a pattern")
    return SuppressRequest(pattern=pattern, penalty=default_penalty)


class MenuState:
    """At most one item's action menu is open at a time."""

    def __init__(self) -> None:
        self.open_id: int | None = None

    def is_open(self, item_id: int) -> bool:
        return self.open_id == item_id

    def toggle(self, item_id: int) -> int | None:
        self.open_id = None if self.open_id == item_id else item_id
        return self.open_id

    def close_all(self) -> None:
        self.open_id = None

    # Clicking anywhere outside a menu closes whichever one is open.
    click_outside = close_all

    def forget(self, item_id: int) -> None:
        if self.open_id == item_id:
            self.open_id = None


class ActionReconciler:
    """Send item actions and drop acknowledged items from the displayed page."""

    def __init__(self, sessions: SessionManager, loader: FeedLoader) -> None:
        self._sessions = sessions
        self._loader = loader

    def apply(
        self,
        item_id: int,
        kind: ActionKind | str,
        request: SuppressRequest | None = None,
    ) -> ActionResult:
        """Send one action; errors propagate and leave the item displayed."""

        kind = ActionKind(kind)
        if kind.is_suppress:
            if request is None:
                raise ValidationError("a pattern and penalty are required to suppress an item")
            request = request.checked()
            self._sessions.call(
                "POST",
                "/articles/dontshow",
                json={"id": item_id, "pattern": request.pattern, "penalty": request.penalty},
            )
        else:
            self._sessions.call(
                "POST",
                "/articles/action",
                json={"id": item_id, "action": _FEEDBACK_ACTIONS[kind]},
            )

        result = ActionResult(item_id=item_id, kind=kind, ok=True, message="action applied")
        self._loader.reconcile(lambda page: apply_action_result(page, item_id, result))
        return result

    def track_click(self, item_id: int) -> None:
        """Record that the item was opened; the item stays displayed."""

        self._sessions.call("POST", "/articles/click", json={"id": item_id})
