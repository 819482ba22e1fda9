"""ASGI middleware guarding the send API with a Bearer token."""

from __future__ import annotations

import hmac

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from src.audit.logger import AuditLogger
from src.models import AuditEvent, AuditEventType, RiskLevel

# Paths that require the token; status endpoints stay public for the status page
PROTECTED_PATHS = frozenset({"/send"})


class AuthMiddleware:
    """Validates Bearer tokens on protected paths using constant-time comparison."""

    def __init__(
        self,
        app: ASGIApp,
        token: str,
        audit_logger: AuditLogger | None = None,
        protected_paths: frozenset[str] = PROTECTED_PATHS,
    ) -> None:
        self.app = app
        self._token = token.encode()
        self.audit_logger = audit_logger
        self._protected_paths = protected_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] not in self._protected_paths:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        auth_header = request.headers.get("authorization", "")

        if not auth_header.startswith("Bearer "):
            reason = "missing_token" if not auth_header else "invalid_format"
            self._log(request, AuditEventType.AUTH_FAILURE, "failure", reason)
            response = JSONResponse({"error": "Authentication required"}, status_code=401)
            await response(scope, receive, send)
            return

        if not hmac.compare_digest(auth_header[7:].encode(), self._token):
            self._log(request, AuditEventType.AUTH_FAILURE, "failure", "invalid_token")
            response = JSONResponse({"error": "Access denied"}, status_code=403)
            await response(scope, receive, send)
            return

        self._log(request, AuditEventType.AUTH_SUCCESS, "success")
        await self.app(scope, receive, send)

    def _log(
        self,
        request: Request,
        event_type: AuditEventType,
        result: str,
        reason: str | None = None,
    ) -> None:
        if not self.audit_logger:
            return
        self.audit_logger.log(AuditEvent(
            event_type=event_type,
            source_ip=request.client.host if request.client else None,
            action=f"{request.method} {request.url.path}",
            result=result,
            risk_level=RiskLevel.HIGH if reason else RiskLevel.INFO,
            details={"reason": reason} if reason else None,
        ))
