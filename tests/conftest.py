"""Shared test fixtures for the WhatsApp webhook bridge."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.session.events import ConnectionEvent, MessageHandler, StateChangeHandler


class FakeProtocolClient:
    """In-memory ProtocolClient: records calls, lets tests push events."""

    def __init__(self, connect_error: Exception | None = None) -> None:
        self.connect_error = connect_error
        self.send_error: Exception | None = None
        self.connect_calls = 0
        self.logout_calls = 0
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self._state_handlers: list[StateChangeHandler] = []
        self._message_handlers: list[MessageHandler] = []

    def on_state_change(self, handler: StateChangeHandler) -> None:
        self._state_handlers.append(handler)

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error

    async def send(self, target: str, content: dict[str, Any]) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((target, content))

    async def logout(self) -> None:
        self.logout_calls += 1

    def emit(self, event: ConnectionEvent) -> None:
        for handler in self._state_handlers:
            handler(event)

    async def deliver(self, upsert_type: str, messages: list[dict[str, Any]]) -> None:
        for handler in self._message_handlers:
            await handler(upsert_type, messages)


@pytest.fixture
def fake_client() -> FakeProtocolClient:
    return FakeProtocolClient()


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_envelope(
    content: dict[str, Any] | None = None,
    remote_jid: str = "123@s.whatsapp.net",
    from_me: bool = False,
    message_id: str = "MSG1",
) -> dict[str, Any]:
    """Raw protocol envelope as delivered in a messages.upsert event."""
    return {
        "key": {"remoteJid": remote_jid, "fromMe": from_me, "id": message_id},
        "message": {"conversation": "hello"} if content is None else content,
        "messageTimestamp": 1700000000,
    }


def render_stub(token: str) -> str:
    return f"data:image/svg+xml;base64,{token}"
