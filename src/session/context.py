"""Session context: the single owner of per-process session state."""

from __future__ import annotations

import logging
import time
from typing import Any

from src.audit.logger import AuditLogger
from src.config import BridgeSettings
from src.dispatch.dispatcher import OutboundDispatcher
from src.models import AuditEvent, AuditEventType, ConnectionState, RiskLevel
from src.session.events import ProtocolClient
from src.session.state_machine import ConnectionStateMachine
from src.session.status import StatusSurface
from src.webhook.handler import InboundMessageHandler
from src.webhook.relay import WebhookRelayClient

logger = logging.getLogger(__name__)


class BridgeSession:
    """Wires the protocol client to the state machine and relay pipeline.

    One instance per process; created at startup, stopped at shutdown.
    """

    def __init__(
        self,
        client: ProtocolClient,
        relay_client: WebhookRelayClient,
        *,
        reconnect_delay: float = 5.0,
        setup_retry_delay: float = 10.0,
        backoff_factor: float = 1.0,
        max_reconnect_delay: float = 60.0,
        send_timeout: float = 20.0,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.client = client
        self.relay_client = relay_client
        self.audit_logger = audit_logger
        self.state_machine = ConnectionStateMachine(
            client.connect,
            reconnect_delay=reconnect_delay,
            setup_retry_delay=setup_retry_delay,
            backoff_factor=backoff_factor,
            max_delay=max_reconnect_delay,
        )
        self.dispatcher = OutboundDispatcher(
            client, self.state_machine, send_timeout=send_timeout, audit_logger=audit_logger,
        )
        self.handler = InboundMessageHandler(relay_client, self.dispatcher, audit_logger)
        self.status = StatusSurface(self.state_machine, relay_client)
        self.started_at = time.monotonic()
        self._wired = False

        if audit_logger:
            self.state_machine.add_observer(self._audit_transition)

    @classmethod
    def from_settings(
        cls,
        settings: BridgeSettings,
        client: ProtocolClient,
        audit_logger: AuditLogger | None = None,
    ) -> BridgeSession:
        relay_client = WebhookRelayClient(
            settings.webhook_url,
            timeout=settings.relay_timeout,
            max_retries=settings.relay_max_retries,
        )
        return cls(
            client,
            relay_client,
            reconnect_delay=settings.reconnect_delay,
            setup_retry_delay=settings.setup_retry_delay,
            backoff_factor=settings.reconnect_backoff_factor,
            max_reconnect_delay=settings.reconnect_max_delay,
            send_timeout=settings.send_timeout,
            audit_logger=audit_logger,
        )

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    async def start(self) -> None:
        if not self._wired:
            self.client.on_state_change(self.state_machine.on_external_event)
            self.client.on_message(self._on_messages)
            self._wired = True
        await self.state_machine.start()

    async def stop(self, logout: bool = True) -> None:
        """Stop reconnecting and, optionally, log the session out."""
        self.state_machine.begin_shutdown()
        if logout:
            try:
                await self.client.logout()
                logger.info("WhatsApp session logged out")
            except Exception as exc:
                logger.error("Logout failed during shutdown: %s", exc)
        self.state_machine.finish_shutdown()

    async def _on_messages(self, upsert_type: str, envelopes: list[dict[str, Any]]) -> None:
        try:
            await self.handler.on_upsert(upsert_type, envelopes)
        except Exception:
            logger.exception("Unhandled error in message handler")

    def _audit_transition(self, previous: ConnectionState, current: ConnectionState) -> None:
        assert self.audit_logger is not None
        self.audit_logger.log(AuditEvent(
            event_type=AuditEventType.CONNECTION_STATE,
            action=f"{previous.value}->{current.value}",
            result="success",
            risk_level=RiskLevel.HIGH if self.state_machine.session_invalidated else RiskLevel.INFO,
            details={"close_reason": self.state_machine.last_close_reason},
        ))
