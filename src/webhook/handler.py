"""Inbound message handler: normalize, relay, resolve and reply.

Each inbound envelope goes through the pipeline once:

1. Normalize (self-originated and unsupported envelopes are ignored)
2. Relay to the automation webhook
3. Resolve a reply string from the webhook response
4. Dispatch the reply to the original chat

Every stage reports failure through HandleResult; nothing is raised to the
caller and nothing is sent back to the chat on failure.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from src.audit.logger import AuditLogger
from src.dispatch.dispatcher import (
    DispatchError,
    DispatchNotConnectedError,
    OutboundDispatcher,
)
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.webhook.models import OutboundOrigin, OutboundRequest
from src.webhook.normalizer import normalize
from src.webhook.relay import WebhookRelayClient
from src.webhook.resolver import resolve

logger = logging.getLogger(__name__)

NOTIFY_UPSERT = "notify"


class HandleResult(str, Enum):
    IGNORED = "ignored"
    RELAY_FAILED = "relay_failed"
    NO_REPLY = "no_reply"
    DISPATCH_FAILED = "dispatch_failed"
    REPLIED = "replied"


class InboundMessageHandler:
    def __init__(
        self,
        relay_client: WebhookRelayClient,
        dispatcher: OutboundDispatcher,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._relay = relay_client
        self._dispatcher = dispatcher
        self._audit = audit_logger

    async def on_upsert(
        self, upsert_type: str, envelopes: list[dict[str, Any]],
    ) -> list[HandleResult]:
        """Handle a batch of envelopes; only live ("notify") deliveries count."""
        if upsert_type != NOTIFY_UPSERT:
            return []
        return [await self.handle(envelope) for envelope in envelopes]

    async def handle(self, envelope: dict[str, Any]) -> HandleResult:
        try:
            return await self._handle(envelope)
        except Exception:
            logger.exception("Unexpected error handling incoming message")
            return HandleResult.RELAY_FAILED

    async def _handle(self, envelope: dict[str, Any]) -> HandleResult:
        message = normalize(envelope)
        if message is None:
            return HandleResult.IGNORED

        logger.info("Incoming message from %s: %s", message.sender_id, message.text[:50])

        outcome = await self._relay.relay(message)
        self._record_relay(message.sender_id, outcome.succeeded, outcome.status_code)
        if not outcome.succeeded:
            return HandleResult.RELAY_FAILED

        reply = resolve(outcome.raw_response)
        if reply is None:
            logger.warning(
                "No reply from webhook or unrecognized format: %r", outcome.raw_response,
            )
            return HandleResult.NO_REPLY

        request = OutboundRequest(
            target_id=message.reply_to,
            text=reply,
            origin=OutboundOrigin.RELAY_REPLY,
        )
        try:
            await self._dispatcher.dispatch(request)
        except DispatchNotConnectedError:
            logger.warning("Dropping reply to %s: WhatsApp not connected", message.sender_id)
            return HandleResult.DISPATCH_FAILED
        except DispatchError:
            # Already logged by the dispatcher; nobody to report to
            return HandleResult.DISPATCH_FAILED

        return HandleResult.REPLIED

    def _record_relay(self, sender_id: str, succeeded: bool, status_code: int | None) -> None:
        if not self._audit:
            return
        self._audit.log(AuditEvent(
            event_type=AuditEventType.WEBHOOK_RELAY,
            action="relay",
            result="success" if succeeded else "failure",
            risk_level=RiskLevel.INFO if succeeded else RiskLevel.MEDIUM,
            details={"sender_id": sender_id, "webhook_status": status_code},
        ))
