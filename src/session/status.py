"""Status surface: read-only snapshots of the session for the HTTP layer."""

from __future__ import annotations

from src.models import SessionStatus
from src.session.state_machine import ConnectionStateMachine
from src.webhook.relay import WebhookRelayClient


class StatusSurface:
    def __init__(
        self,
        state_machine: ConnectionStateMachine,
        relay_client: WebhookRelayClient | None = None,
    ) -> None:
        self._state_machine = state_machine
        self._relay = relay_client

    def current_status(self) -> SessionStatus:
        machine = self._state_machine
        relay_failures = self._relay.consecutive_failures if self._relay else 0
        relay_error = self._relay.last_error if self._relay else None
        return SessionStatus(
            connected=machine.connected,
            state=machine.state,
            pairing_challenge=None if machine.connected else machine.pairing_challenge,
            session_invalidated=machine.session_invalidated,
            reconnect_pending=machine.reconnect_pending,
            consecutive_relay_failures=relay_failures,
            last_relay_error=relay_error.value if relay_error else None,
        )
