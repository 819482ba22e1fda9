"""Protocol client interface and the connection events it emits.

The messaging protocol (pairing, encryption, multi-device sync) lives behind
``ProtocolClient``. Any implementation, either the Baileys bridge client or a test
fake, is injected into the session; nothing here subclasses it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class PairingChallengeIssued:
    token: str


@dataclass(frozen=True)
class Opened:
    pass


@dataclass(frozen=True)
class Closed:
    reason_code: int | None = None


ConnectionEvent = PairingChallengeIssued | Opened | Closed

StateChangeHandler = Callable[[ConnectionEvent], None]
# Called with the upsert type ("notify", "append", ...) and the raw envelopes.
MessageHandler = Callable[[str, list[dict[str, Any]]], Awaitable[None]]


class ProtocolClient(Protocol):
    def on_state_change(self, handler: StateChangeHandler) -> None: ...

    def on_message(self, handler: MessageHandler) -> None: ...

    async def connect(self) -> None: ...

    async def send(self, target: str, content: dict[str, Any]) -> None: ...

    async def logout(self) -> None: ...
