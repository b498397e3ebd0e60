"""API routes exposing the feed and admin controllers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from feedcontrol.actions import ActionKind
from feedcontrol.controllers import AdminConsoleController, UserFeedController
from feedcontrol.errors import ValidationError
from feedcontrol.models import FeedItem, StatusSnapshot
from feedcontrol.resources import ResourceListEditor

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionView(BaseModel):
    authenticated: bool
    identity: str | None = None
    status: str | None = None


class UserLoginRequest(BaseModel):
    username: str = ""
    secret: str = ""


class AdminLoginRequest(BaseModel):
    secret: str = ""


class FeedView(BaseModel):
    items: List[FeedItem] = Field(default_factory=list)
    pending_ids: List[int] = Field(default_factory=list)
    open_menu: int | None = None
    status: str | None = None


class AdvanceView(FeedView):
    empty: bool = False
    refreshed: bool = False
    refresh_error: str | None = None


class ActionRequest(BaseModel):
    action: str
    pattern: str | None = None
    penalty: float | None = None


class ActionView(BaseModel):
    ok: bool
    message: str
    status: str | None = None


class SuppressDefaultsView(BaseModel):
    pattern: str | None = None
    penalty: float | None = None


class AdminStatusView(BaseModel):
    running: bool
    manual_in_flight: bool
    snapshot: StatusSnapshot | None = None
    status: str | None = None


class TriggerView(BaseModel):
    outcome: str
    message: str


class CollectionView(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    extras: Dict[str, Any] = Field(default_factory=dict)
    buffer: Dict[str, Any] | None = None
    status: str | None = None


def _user(request: Request) -> UserFeedController:
    return request.app.state.user


def _admin(request: Request) -> AdminConsoleController:
    return request.app.state.admin


def _require(controller: UserFeedController | AdminConsoleController) -> None:
    if not controller.authenticated:
        raise HTTPException(status_code=401, detail=controller.status or "sign in first")


def _feed_view(controller: UserFeedController) -> FeedView:
    return FeedView(
        items=list(controller.items),
        pending_ids=list(controller.pending_ids),
        open_menu=controller.menus.open_id,
        status=controller.status,
    )


def _session_view(controller: UserFeedController | AdminConsoleController) -> SessionView:
    identity = controller.session.identity
    return SessionView(
        authenticated=controller.authenticated,
        identity=identity.value if identity else None,
        status=controller.status,
    )


def _collection(controller: AdminConsoleController, name: str) -> ResourceListEditor[Any]:
    editors = {"topics": controller.topics, "rules": controller.rules}
    if name not in editors:
        raise HTTPException(status_code=404, detail=f"Unknown collection: {name}")
    return editors[name]


def _collection_view(controller: AdminConsoleController, editor: ResourceListEditor[Any]) -> CollectionView:
    return CollectionView(
        items=[entry.model_dump() for entry in editor.items],
        extras=editor.extras,
        buffer=dict(editor.buffer.values) if editor.buffer else None,
        status=controller.status,
    )


@router.get("/feed/session", response_model=SessionView)
async def feed_session(request: Request) -> SessionView:
    return _session_view(_user(request))


@router.post("/feed/login", response_model=SessionView)
async def feed_login(request: Request, payload: UserLoginRequest) -> SessionView:
    controller = _user(request)
    if not await run_in_threadpool(controller.login, payload.username, payload.secret):
        raise HTTPException(status_code=401, detail=controller.status)
    return _session_view(controller)


@router.post("/feed/logout", response_model=SessionView)
async def feed_logout(request: Request) -> SessionView:
    controller = _user(request)
    await run_in_threadpool(controller.logout)
    return _session_view(controller)


@router.get("/feed", response_model=FeedView)
async def feed_page(request: Request) -> FeedView:
    """Return the currently displayed page without contacting the backend."""

    controller = _user(request)
    _require(controller)
    return _feed_view(controller)


@router.post("/feed/load", response_model=FeedView)
async def feed_load(request: Request) -> FeedView:
    controller = _user(request)
    _require(controller)
    await run_in_threadpool(controller.load)
    return _feed_view(controller)


@router.post("/feed/next", response_model=AdvanceView)
async def feed_next(request: Request) -> AdvanceView:
    """Mark the current batch seen and move to the next one."""

    controller = _user(request)
    _require(controller)
    outcome = await run_in_threadpool(controller.advance)
    if outcome is None:
        logger.warning("Next batch failed: %s", controller.status)
        raise HTTPException(status_code=502, detail=controller.status)
    return AdvanceView(
        **_feed_view(controller).model_dump(),
        empty=outcome.empty,
        refreshed=outcome.refreshed,
        refresh_error=outcome.refresh_error,
    )


@router.post("/feed/items/{item_id}/action", response_model=ActionView)
async def feed_action(request: Request, item_id: int, payload: ActionRequest) -> ActionView:
    controller = _user(request)
    _require(controller)
    result = await run_in_threadpool(
        controller.apply_action, item_id, payload.action, pattern=payload.pattern, penalty=payload.penalty
    )
    return ActionView(ok=result.ok, message=result.message, status=controller.status)


@router.get("/feed/items/{item_id}/suppress-defaults", response_model=SuppressDefaultsView)
async def feed_suppress_defaults(
    request: Request, item_id: int, kind: Literal["suppress-item", "suppress-domain"] = "suppress-item"
) -> SuppressDefaultsView:
    controller = _user(request)
    _require(controller)
    try:
        defaults = controller.suppress_defaults(item_id, ActionKind(kind))
    except ValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return SuppressDefaultsView(pattern=defaults.pattern, penalty=defaults.penalty)


@router.post("/feed/items/{item_id}/click", response_model=ActionView)
async def feed_click(request: Request, item_id: int) -> ActionView:
    controller = _user(request)
    _require(controller)
    ok = await run_in_threadpool(controller.track_click, item_id)
    return ActionView(ok=ok, message="click recorded" if ok else "click tracking failed", status=controller.status)


@router.post("/feed/items/{item_id}/menu", response_model=FeedView)
async def feed_toggle_menu(request: Request, item_id: int) -> FeedView:
    controller = _user(request)
    _require(controller)
    controller.toggle_menu(item_id)
    return _feed_view(controller)


@router.post("/feed/menu/close", response_model=FeedView)
async def feed_close_menus(request: Request) -> FeedView:
    controller = _user(request)
    _require(controller)
    controller.click_outside()
    return _feed_view(controller)


@router.get("/admin/session", response_model=SessionView)
async def admin_session(request: Request) -> SessionView:
    return _session_view(_admin(request))


@router.post("/admin/login", response_model=SessionView)
async def admin_login(request: Request, payload: AdminLoginRequest) -> SessionView:
    controller = _admin(request)
    if not await run_in_threadpool(controller.login, payload.secret):
        raise HTTPException(status_code=401, detail=controller.status)
    return _session_view(controller)


@router.post("/admin/logout", response_model=SessionView)
async def admin_logout(request: Request) -> SessionView:
    controller = _admin(request)
    await run_in_threadpool(controller.logout)
    return _session_view(controller)


@router.get("/admin/status", response_model=AdminStatusView)
async def admin_status(request: Request) -> AdminStatusView:
    """Return the last polled ingest state; the poll loop keeps it fresh."""

    controller = _admin(request)
    _require(controller)
    return AdminStatusView(
        running=controller.running,
        manual_in_flight=controller.ingest.manual_in_flight,
        snapshot=controller.snapshot,
        status=controller.status,
    )


@router.post("/admin/ingest", response_model=TriggerView)
async def admin_ingest(request: Request) -> TriggerView:
    controller = _admin(request)
    _require(controller)
    result = await run_in_threadpool(controller.trigger_ingest)
    return TriggerView(outcome=result.outcome.value, message=result.message)


@router.post("/admin/dedupe")
async def admin_dedupe(request: Request) -> Dict[str, Any]:
    controller = _admin(request)
    _require(controller)
    result = await run_in_threadpool(controller.dedupe)
    if result is None:
        raise HTTPException(status_code=502, detail=controller.status)
    return result.model_dump()


@router.get("/admin/{collection}", response_model=CollectionView)
async def admin_list(request: Request, collection: str) -> CollectionView:
    controller = _admin(request)
    _require(controller)
    editor = _collection(controller, collection)
    if not await run_in_threadpool(controller.load_collection, editor):
        raise HTTPException(status_code=502, detail=controller.status)
    return _collection_view(controller, editor)


@router.post("/admin/{collection}", response_model=CollectionView)
async def admin_create(
    request: Request,
    collection: str,
    fields: Dict[str, Any] | None = Body(default=None),
) -> CollectionView:
    """Create an entry; fields are merged over any staged edit buffer."""

    controller = _admin(request)
    _require(controller)
    editor = _collection(controller, collection)
    if not await run_in_threadpool(controller.save, editor, fields or {}):
        raise HTTPException(status_code=400, detail=controller.status)
    return _collection_view(controller, editor)


@router.post("/admin/{collection}/{entry_id}/edit", response_model=CollectionView)
async def admin_edit(request: Request, collection: str, entry_id: int) -> CollectionView:
    controller = _admin(request)
    _require(controller)
    editor = _collection(controller, collection)
    if controller.edit(editor, entry_id) is None:
        raise HTTPException(status_code=404, detail=controller.status)
    return _collection_view(controller, editor)


@router.delete("/admin/{collection}/{entry_id}", response_model=CollectionView)
async def admin_delete(request: Request, collection: str, entry_id: int) -> CollectionView:
    controller = _admin(request)
    _require(controller)
    editor = _collection(controller, collection)
    if not await run_in_threadpool(controller.delete, editor, entry_id):
        raise HTTPException(status_code=502, detail=controller.status)
    return _collection_view(controller, editor)
