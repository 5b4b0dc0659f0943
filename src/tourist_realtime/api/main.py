"""
Realtime API
------------
FastAPI application exposing the realtime hub.

Endpoints:
    GET  /                       Liveness message
    GET  /health                 Health check
    WS   /ws                     Realtime channel (token via ?token= or Bearer header)
    GET  /api/realtime/stats     Hub statistics (privileged roles only)
    POST /api/realtime/publish   Server-side event injection (privileged roles only)

The hub is owned by the application (app.state.hub) and started/stopped by
its lifespan.

Usage:
    uvicorn tourist_realtime.api.main:create_app --factory
    python scripts/run_server.py --config config/realtime.yaml
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..auth.verifier import AuthError, Identity
from ..config import RealtimeConfig
from ..protocol.messages import Event
from ..server.hub import RealtimeHub
from ..transport.websocket_transport import WebSocketTransport
from .schemas import HealthStatus, HubStats, PublishRequest, PublishResponse, RootStatus


logger = logging.getLogger(__name__)


# ============================================================
# CREDENTIALS
# ============================================================

def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def websocket_credential(websocket: WebSocket) -> Optional[str]:
    """Credential presented on a WebSocket handshake."""
    token = websocket.query_params.get("token")
    if token:
        return token
    return _bearer_token(websocket.headers.get("authorization"))


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def require_privileged(request: Request, hub: RealtimeHub = Depends(get_hub)) -> Identity:
    """
    Dependency: caller must present a valid token with a privileged role.

    Raises:
        HTTPException: 401 for missing/invalid tokens, 403 for other roles.
    """
    token = _bearer_token(request.headers.get("authorization"))
    try:
        identity = hub.verifier.verify(token)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    if not hub.config.is_privileged(identity.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient role",
        )
    return identity


# ============================================================
# APP FACTORY
# ============================================================

def create_app(config: Optional[RealtimeConfig] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Hub configuration (read from the environment if omitted).
    """
    if config is None:
        config = RealtimeConfig.from_env()

    hub = RealtimeHub(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Starts/stops the hub's router worker."""
        app.state.started_at = time.time()
        await hub.start()
        logger.info("Realtime API started (environment=%s)", config.environment)

        yield

        await hub.stop()
        logger.info("Realtime API stopped")

    app = FastAPI(
        title="Tourist Safety Realtime Hub",
        description="Authenticated realtime event broadcasting for the tourist safety platform",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.hub = hub
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException):
        """Unknown routes answer in the same shape as GET /."""
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"success": False, "message": "Route not found", "path": request.url.path},
            )
        return await http_exception_handler(request, exc)

    # ------------------------------------------------------------
    # REST
    # ------------------------------------------------------------

    @app.get("/", response_model=RootStatus)
    def root():
        return RootStatus(message="Tourist Safety Platform realtime API is running.")

    @app.get("/health", response_model=HealthStatus)
    def health(request: Request):
        """Health check endpoint."""
        return HealthStatus(
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime=time.time() - request.app.state.started_at,
            environment=config.environment,
            version=__version__,
            hub_running=hub.running,
        )

    @app.get("/api/realtime/stats", response_model=HubStats)
    def realtime_stats(_: Identity = Depends(require_privileged)):
        """Hub statistics: sessions, rooms, routing counters."""
        return hub.get_stats()

    @app.post(
        "/api/realtime/publish",
        response_model=PublishResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def publish(body: PublishRequest, identity: Identity = Depends(require_privileged)):
        """
        Inject an event as the server.

        The event is routed exactly like a client event, with no sender to
        exclude.
        """
        event = Event(type=body.event, payload=body.data)
        await hub.publish(event)
        logger.info(
            "User %s published %s (%s)",
            identity.subject_id, event.type.value, event.event_id,
        )
        return PublishResponse(event_id=event.event_id, event=event.type)

    # ------------------------------------------------------------
    # WEBSOCKET
    # ------------------------------------------------------------

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        Realtime channel.

        Rejected credentials get close code 4401 ("Authentication error").
        Accepted sessions first receive a session_ready frame, then events.
        """
        await hub.handle_connection(
            websocket_credential(websocket),
            WebSocketTransport(websocket),
        )

    return app
