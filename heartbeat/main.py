"""Main FastAPI application for the heartbeat views."""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import httpx
from fastapi import FastAPI

from heartbeat.api import router
from heartbeat.client import HeartbeatClient
from heartbeat.config import API_BASE_URL, REQUEST_TIMEOUT_SECONDS
from heartbeat.dossier import ActivityTagStore, DossierStore
from heartbeat.session import SessionCache
from heartbeat.storage import KeyValueStore


def create_app(
    http: Optional[httpx.AsyncClient] = None,
    store: Optional[KeyValueStore] = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    """
    Build the application.

    The session cache, API client and local stores are created once at startup
    and shared by every request through ``app.state``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Lifespan context manager for startup and shutdown."""
        # Startup
        owns_http = http is None
        client = http or httpx.AsyncClient(base_url=API_BASE_URL, timeout=REQUEST_TIMEOUT_SECONDS)
        kv_store = store or KeyValueStore.default()
        session = SessionCache(kv_store, client, clock=clock)
        app.state.session = session
        app.state.client = HeartbeatClient(client, session)
        app.state.dossier = DossierStore(kv_store)
        app.state.tags = ActivityTagStore(kv_store)
        yield
        # Shutdown
        if owns_http:
            await client.aclose()

    app = FastAPI(
        title="Heartbeat Sense",
        description="Session handling and heart rate aggregation on top of the Heartbeat API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
