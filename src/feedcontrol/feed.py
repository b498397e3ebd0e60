"""Feed paging with mark-seen batching and the exhausted-feed escalation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Tuple

from feedcontrol.errors import AuthError, ControllerError
from feedcontrol.models import FeedItem, FeedPageResponse, parse_payload
from feedcontrol.session import SessionManager

__all__ = ["AdvanceOutcome", "FeedLoader", "FeedPage", "NO_ITEMS"]

logger = logging.getLogger(__name__)

NO_ITEMS = "no items available"


@dataclass(frozen=True, slots=True)
class FeedPage:
    """Displayed items; the pending id set is derived from it so both always agree."""

    items: Tuple[FeedItem, ...] = ()

    @classmethod
    def from_items(cls, items: Iterable[FeedItem]) -> "FeedPage":
        return cls(items=tuple(items))

    @property
    def ids(self) -> Tuple[int, ...]:
        return tuple(item.id for item in self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item_id: object) -> bool:
        return any(item.id == item_id for item in self.items)

    def get(self, item_id: int) -> FeedItem | None:
        return next((item for item in self.items if item.id == item_id), None)

    def without(self, item_id: int) -> "FeedPage":
        return FeedPage(items=tuple(item for item in self.items if item.id != item_id))


@dataclass(slots=True)
class AdvanceOutcome:
    """What a call to :meth:`FeedLoader.advance` ended with."""

    count: int
    marked_seen: Tuple[int, ...] = ()
    refreshed: bool = False
    refresh_error: str | None = None

    @property
    def empty(self) -> bool:
        return self.count == 0

    @property
    def message(self) -> str:
        if self.empty:
            return NO_ITEMS
        return f"loaded {self.count} cards"


class FeedLoader:
    """Own the current :class:`FeedPage` for one user session."""

    def __init__(self, sessions: SessionManager, *, batch_limit: int | None = None) -> None:
        self._sessions = sessions
        self._batch_limit = batch_limit
        self._page = FeedPage()
        self._lock = threading.Lock()

    @property
    def page(self) -> FeedPage:
        return self._page

    @property
    def pending_ids(self) -> Tuple[int, ...]:
        """Ids that will be marked seen by the next :meth:`advance`."""

        return self._page.ids

    def clear(self) -> None:
        with self._lock:
            self._page = FeedPage()

    def reconcile(self, transition: Callable[[FeedPage], FeedPage]) -> FeedPage:
        """Apply ``transition`` to whatever page is current at the time of the call."""

        with self._lock:
            self._page = transition(self._page)
            return self._page

    def load_page(self) -> int:
        """Replace the page with a fresh fetch and return how many items it holds.

        Returns ``0`` and clears the page when no session is active. Transport
        and auth failures propagate and leave the previous page untouched.
        """

        if not self._sessions.authenticated:
            self.clear()
            return 0

        epoch = self._sessions.epoch
        params = {"limit": self._batch_limit} if self._batch_limit else None
        payload = self._sessions.call("GET", "/feed", params=params)
        response = parse_payload(FeedPageResponse.model_validate, payload, "/feed")
        page = FeedPage.from_items(response.items)

        with self._lock:
            if not self._sessions.is_current(epoch):
                logger.info("Discarding feed page fetched by an ended session")
                return len(self._page)
            self._page = page
        return len(page)

    def advance(self) -> AdvanceOutcome:
        """Mark the displayed batch seen, load the next one and escalate if it is empty.

        A failed refresh trigger is recorded and the reload still happens, except
        for :class:`AuthError`: the session is gone, so it propagates.
        """

        if not self._sessions.authenticated:
            self.clear()
            raise AuthError("sign in first")

        marked = self.pending_ids
        if marked:
            # A failure here aborts: reloading would show the same items again.
            self._sessions.call("POST", "/feed/seen", json={"ids": list(marked)})

        count = self.load_page()
        if count:
            return AdvanceOutcome(count=count, marked_seen=marked)

        outcome = AdvanceOutcome(count=0, marked_seen=marked, refreshed=True)
        try:
            self._sessions.call("POST", "/feed/refresh", json={})
        except AuthError:
            raise
        except ControllerError as exc:
            # Another client may already have started ingestion; load again regardless.
            logger.warning("Feed refresh trigger failed: %s", exc)
            outcome.refresh_error = str(exc)

        outcome.count = self.load_page()
        return outcome
