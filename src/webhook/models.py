"""Data models for the inbound relay pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class SourceKind(str, Enum):
    """Envelope kinds the normalizer recognizes (the protocol's message keys)."""

    CONVERSATION = "conversation"
    EXTENDED_TEXT = "extendedTextMessage"
    IMAGE = "imageMessage"
    VIDEO = "videoMessage"


class RelayError(str, Enum):
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"


class OutboundOrigin(str, Enum):
    RELAY_REPLY = "relay_reply"
    DIRECT_API = "direct_api"


@dataclass(frozen=True)
class NormalizedMessage:
    """Canonical inbound message, forwarded once to the webhook."""

    sender_id: str  # address without transport suffix
    text: str
    timestamp: datetime
    message_id: str
    source_kind: SourceKind
    reply_to: str  # full chat address the reply goes back to

    def to_webhook_payload(self) -> dict[str, Any]:
        return {
            "from": self.sender_id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "messageId": self.message_id,
            "messageType": self.source_kind.value,
        }


@dataclass(frozen=True)
class RelayOutcome:
    succeeded: bool
    raw_response: Any = None
    error: RelayError | None = None
    status_code: int | None = None
    attempts: int = 1


@dataclass(frozen=True)
class OutboundRequest:
    target_id: str
    text: str
    origin: OutboundOrigin
