"""Shared Pydantic data models for the WhatsApp webhook bridge."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    CLOSING = "closing"


class DisconnectReason(IntEnum):
    """Close reason codes reported by the protocol layer (Baileys values)."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


# Reason codes after which the stored session cannot be resumed.
TERMINAL_DISCONNECT_REASONS = frozenset({DisconnectReason.LOGGED_OUT})


class AuditEventType(str, Enum):
    CONNECTION_STATE = "connection_state"
    WEBHOOK_RELAY = "webhook_relay"
    MESSAGE_DISPATCH = "message_dispatch"
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    RATE_LIMITED = "rate_limited"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Status Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class SessionStatus(BaseModel):
    """Point-in-time view of the session, read by the HTTP surface."""

    model_config = ConfigDict(frozen=True)

    connected: bool
    state: ConnectionState
    pairing_challenge: str | None = None
    timestamp: str = Field(default_factory=_now_iso)
    session_invalidated: bool = False
    reconnect_pending: bool = False
    consecutive_relay_failures: int = Field(default=0, ge=0)
    last_relay_error: str | None = None


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
