#!/usr/bin/env python3
"""
FastAPI host for the live world.

Provides:
- Health of the cache layer and both domains
- Multiplexed WebSocket with sequence numbers for change notifications
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
import structlog

from api.services.websocket_manager import WebSocketManager
from worldstate.config import Settings, load_settings
from worldstate.logging_config import configure_logging
from worldstate.runtime import WorldRuntime

logger = structlog.get_logger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[WorldRuntime] = None,
    ws_manager: Optional[WebSocketManager] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to build a runtime from (loaded from
            config/settings.yaml if omitted)
        runtime: Pre-built runtime, mainly for tests
        ws_manager: WebSocket manager the runtime broadcasts to
    """
    manager = ws_manager or WebSocketManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("api_starting")

        rt = runtime
        if rt is None:
            app_settings = settings or load_settings(os.environ.get("WORLDSTATE_CONFIG", "config/settings.yaml"))
            configure_logging(app_settings.log_level, app_settings.json_logs)
            rt = WorldRuntime(app_settings, broadcaster=manager)

        manager.snapshot_provider = rt.snapshot
        await rt.start()

        app.state.runtime = rt
        app.state.ws_manager = manager
        logger.info("api_ready")

        yield

        logger.info("api_shutting_down")
        await manager.close_all()
        await rt.shutdown()
        logger.info("api_shutdown_complete")

    app = FastAPI(
        title="Live World State API",
        description="Territories, world events and market state",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8080"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_runtime(request: Request) -> WorldRuntime:
        rt = getattr(request.app.state, "runtime", None)
        if rt is None:
            raise HTTPException(status_code=503, detail="World runtime not started")
        return rt

    # ========================================================================
    # REST Endpoints
    # ========================================================================

    @app.get("/api/v1/health")
    async def health_check(request: Request):
        """Cache backend health plus domain counters."""
        rt = get_runtime(request)
        health = await rt.health()
        return {
            **health,
            "websocket_clients": len(manager.clients),
            "timestamp": _utc_now(),
        }

    # ========================================================================
    # WebSocket Endpoint (Multiplexed)
    # ========================================================================

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        Multiplexed WebSocket endpoint with sequence numbers.

        Channels are change type names, e.g. territory_control_changed,
        event_created, event_expired, prices_updated,
        transaction_completed, economic_indicators_updated, or "*".
        """
        await manager.connect(websocket)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("API_PORT", 8000))
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
