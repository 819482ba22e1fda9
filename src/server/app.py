"""FastAPI application: status page, status endpoints and the send API."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from src.audit.logger import AuditLogger
from src.config import BridgeSettings
from src.dispatch.dispatcher import DispatchNotConnectedError, DispatchSendError
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.server.auth_middleware import AuthMiddleware
from src.server.rate_limiter import SendRateLimiter
from src.server.status_page import STATUS_PAGE_HTML
from src.session.bridge_client import BaileysBridgeClient
from src.session.context import BridgeSession
from src.webhook.models import OutboundOrigin, OutboundRequest

logger = logging.getLogger(__name__)

_NOT_CONNECTED_BODY = {"error": "WhatsApp not connected", "status": "disconnected"}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = BridgeSettings.from_env()
    audit_logger = (
        AuditLogger.from_env(settings.audit_log_path) if settings.audit_log_path else None
    )
    client = BaileysBridgeClient(settings.bridge_url, token=settings.bridge_token)
    session = BridgeSession.from_settings(settings, client, audit_logger)
    return create_app(
        session,
        api_token=settings.api_token,
        send_rate_limit=settings.send_rate_limit,
        audit_logger=audit_logger,
        logout_on_shutdown=settings.logout_on_shutdown,
    )


def _log_unhandled_error(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    logger.error(
        "Unhandled asynchronous error: %s",
        context.get("message", "unknown"),
        exc_info=context.get("exception"),
    )


def create_app(
    session: BridgeSession,
    api_token: str | None = None,
    send_rate_limit: int = 60,
    audit_logger: AuditLogger | None = None,
    logout_on_shutdown: bool = True,
) -> FastAPI:
    """Create the bridge app around an existing session.

    The lifespan starts the session once the server is up and logs it out on
    shutdown (SIGINT/SIGTERM via uvicorn).
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        asyncio.get_running_loop().set_exception_handler(_log_unhandled_error)
        start_task = asyncio.create_task(session.start())
        try:
            yield
        finally:
            logger.info("Shutting down gracefully...")
            if not start_task.done():
                start_task.cancel()
            await session.stop(logout=logout_on_shutdown)

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.session = session
    limiter = SendRateLimiter(max_requests=send_rate_limit)

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return STATUS_PAGE_HTML

    @app.get("/qr-status")
    async def qr_status() -> dict[str, Any]:
        status = session.status.current_status()
        return {
            "connected": status.connected,
            "qr": status.pairing_challenge,
            "timestamp": status.timestamp,
        }

    @app.get("/health")
    async def health() -> dict[str, Any]:
        connected = session.state_machine.connected
        return {
            "status": "running",
            "whatsapp": "connected" if connected else "disconnected",
            "timestamp": _now_iso(),
        }

    @app.get("/status")
    async def status() -> dict[str, Any]:
        current = session.status.current_status()
        return {
            "connected": current.connected,
            "timestamp": current.timestamp,
            "uptime": session.uptime,
            "state": current.state.value,
            "sessionInvalidated": current.session_invalidated,
            "relay": {
                "consecutiveFailures": current.consecutive_relay_failures,
                "lastError": current.last_relay_error,
            },
        }

    @app.post("/send")
    async def send(request: Request) -> JSONResponse:
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.check(client_ip):
            if audit_logger:
                audit_logger.log(AuditEvent(
                    event_type=AuditEventType.RATE_LIMITED,
                    source_ip=client_ip,
                    action="POST /send",
                    result="blocked",
                    risk_level=RiskLevel.MEDIUM,
                ))
            return JSONResponse({"error": "Rate limit exceeded"}, status_code=429)

        if not session.state_machine.connected:
            return JSONResponse(_NOT_CONNECTED_BODY, status_code=503)

        try:
            payload = json.loads(await request.body() or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        to = payload.get("to")
        text = payload.get("text")
        if isinstance(to, int) and not isinstance(to, bool):
            to = str(to)
        if not (isinstance(to, str) and to and isinstance(text, str) and text):
            return JSONResponse(
                {"error": "Missing required fields: to, text"}, status_code=400,
            )

        try:
            await session.dispatcher.dispatch(
                OutboundRequest(target_id=to, text=text, origin=OutboundOrigin.DIRECT_API),
            )
        except DispatchNotConnectedError:
            return JSONResponse(_NOT_CONNECTED_BODY, status_code=503)
        except DispatchSendError as exc:
            logger.error("Error sending message via /send endpoint: %s", exc)
            return JSONResponse(
                {"error": "Failed to send message", "details": str(exc)},
                status_code=500,
            )

        return JSONResponse({
            "success": True,
            "message": "Message sent successfully",
            "to": to,
            "timestamp": _now_iso(),
        })

    if api_token:
        app.add_middleware(AuthMiddleware, token=api_token, audit_logger=audit_logger)

    return app
