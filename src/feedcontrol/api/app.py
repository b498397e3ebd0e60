"""FastAPI application owning one user and one admin controller."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool

from feedcontrol.api.routes import router
from feedcontrol.config import ClientConfig
from feedcontrol.controllers import AdminConsoleController, UserFeedController


def create_app(
    config: ClientConfig | None = None,
    *,
    user: UserFeedController | None = None,
    admin: AdminConsoleController | None = None,
) -> FastAPI:
    """Build the app; controllers are created from ``config`` unless supplied."""

    if user is None or admin is None:
        config = config or ClientConfig.from_file()
        user = user or UserFeedController(config)
        admin = admin or AdminConsoleController(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await run_in_threadpool(user.init)
        await run_in_threadpool(admin.init)
        try:
            yield
        finally:
            await run_in_threadpool(admin.dispose)
            user.dispose()

    app = FastAPI(
        title="Feed Control",
        description="Drives a ranked content feed and its admin console",
        lifespan=lifespan,
    )
    app.state.user = user
    app.state.admin = admin
    app.include_router(router, prefix="/api")
    return app
