"""Outbound dispatcher: sends replies and API messages through the session."""

from __future__ import annotations

import asyncio
import logging

from src.audit.logger import AuditLogger
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.session.events import ProtocolClient
from src.session.state_machine import ConnectionStateMachine
from src.webhook.models import OutboundRequest

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS_SUFFIX = "@s.whatsapp.net"


class DispatchError(Exception):
    """Base class for outbound send failures."""


class DispatchNotConnectedError(DispatchError):
    """Raised when a send is attempted while the session is not connected."""

    def __init__(self, state: str) -> None:
        self.state = state
        super().__init__(f"WhatsApp not connected (state={state})")


class DispatchSendError(DispatchError):
    """Raised when the protocol client fails to deliver a message."""

    def __init__(self, target: str, cause: BaseException) -> None:
        self.target = target
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)


def qualify_address(target: str) -> str:
    """Append the default transport suffix to bare contact ids."""
    return target if "@" in target else f"{target}{DEFAULT_ADDRESS_SUFFIX}"


class OutboundDispatcher:
    def __init__(
        self,
        client: ProtocolClient,
        state_machine: ConnectionStateMachine,
        send_timeout: float = 20.0,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._client = client
        self._state_machine = state_machine
        self._send_timeout = send_timeout
        self._audit = audit_logger

    async def dispatch(self, request: OutboundRequest) -> str:
        """Send ``request`` and return the address it was delivered to.

        Raises DispatchNotConnectedError without touching the client when the
        session is not connected, DispatchSendError when the send fails.
        """
        if not self._state_machine.connected:
            self._record(request, None, "blocked")
            raise DispatchNotConnectedError(self._state_machine.state.value)

        target = qualify_address(request.target_id)
        try:
            await asyncio.wait_for(
                self._client.send(target, {"text": request.text}),
                timeout=self._send_timeout,
            )
        except Exception as exc:
            logger.error("Failed to send %s message to %s: %s", request.origin.value, target, exc)
            self._record(request, target, "failure")
            raise DispatchSendError(target, exc) from exc

        logger.info(
            "Sent %s message to %s: %s", request.origin.value, target, request.text[:50],
        )
        self._record(request, target, "success")
        return target

    def _record(self, request: OutboundRequest, target: str | None, result: str) -> None:
        if not self._audit:
            return
        self._audit.log(AuditEvent(
            event_type=AuditEventType.MESSAGE_DISPATCH,
            action=request.origin.value,
            result=result,
            risk_level=RiskLevel.INFO if result == "success" else RiskLevel.MEDIUM,
            details={"target": target or request.target_id},
        ))
