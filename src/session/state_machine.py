"""Connection state machine: session lifecycle and reconnect policy.

States: disconnected → awaiting_pairing → connected → closing. Transitions are
driven by events from the protocol client (pairing challenge, opened, closed)
and by the machine's own reconnect decisions.

Reconnect policy:
- A close with a terminal reason (logged out) leaves the session
  disconnected for good; the auth state must be re-provisioned.
- Any other close schedules one reconnect after ``reconnect_delay``. The delay
  grows by ``backoff_factor`` per consecutive attempt, capped at ``max_delay``
  (factor 1.0 keeps it flat).
- A connect call that raises schedules a retry after ``setup_retry_delay`` and
  never propagates.
- At most one reconnect timer is pending at any time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Collection

from src.models import TERMINAL_DISCONNECT_REASONS, ConnectionState
from src.session.events import Closed, ConnectionEvent, Opened, PairingChallengeIssued
from src.session.pairing import render_pairing_challenge

logger = logging.getLogger(__name__)

StateObserver = Callable[[ConnectionState, ConnectionState], None]


class ConnectionSetupError(Exception):
    """Raised (and handled internally) when a connection attempt fails to start."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Connection setup failed: {cause}")


class ConnectionStateMachine:
    def __init__(
        self,
        connect: Callable[[], Awaitable[None]],
        *,
        reconnect_delay: float = 5.0,
        setup_retry_delay: float = 10.0,
        backoff_factor: float = 1.0,
        max_delay: float = 60.0,
        renderer: Callable[[str], str] = render_pairing_challenge,
        terminal_reasons: Collection[int] = TERMINAL_DISCONNECT_REASONS,
    ) -> None:
        self._connect = connect
        self._reconnect_delay = reconnect_delay
        self._setup_retry_delay = setup_retry_delay
        self._backoff_factor = backoff_factor
        self._max_delay = max_delay
        self._renderer = renderer
        self._terminal_reasons = frozenset(int(r) for r in terminal_reasons)

        self._state = ConnectionState.DISCONNECTED
        self._pairing_token: str | None = None
        self._pairing_image: str | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._attempts = 0
        self._stopping = False
        self._connecting = False
        self._retry_requested = False
        self._observers: list[StateObserver] = []

        self.last_close_reason: int | None = None
        self.session_invalidated = False

    # --- Read-only view ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def pairing_token(self) -> str | None:
        return self._pairing_token

    @property
    def pairing_challenge(self) -> str | None:
        """The rendered (data URI) pairing challenge, if one is outstanding."""
        return self._pairing_image

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def add_observer(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Make the first connection attempt."""
        self._stopping = False
        if not await self._attempt_connect():
            self._schedule_reconnect(self._setup_retry_delay)

    def begin_shutdown(self) -> None:
        """Enter ``closing``: no reconnects are scheduled from here on."""
        self._stopping = True
        self._cancel_reconnect()
        self._transition(ConnectionState.CLOSING)

    def finish_shutdown(self) -> None:
        self._clear_pairing()
        self._transition(ConnectionState.DISCONNECTED)

    # --- Events ---

    def on_external_event(self, event: ConnectionEvent) -> None:
        if isinstance(event, PairingChallengeIssued):
            self._on_pairing_challenge(event.token)
        elif isinstance(event, Opened):
            self._on_opened()
        elif isinstance(event, Closed):
            self._on_closed(event.reason_code)
        else:
            logger.warning("Ignoring unknown connection event: %r", event)

    def _on_pairing_challenge(self, token: str) -> None:
        if self._stopping:
            logger.debug("Pairing challenge received while closing; ignored")
            return
        try:
            image = self._renderer(token)
        except Exception:
            logger.exception("Failed to render pairing challenge")
            image = None
        self._pairing_token = token
        self._pairing_image = image
        logger.info("Pairing challenge issued; scan it from the status page")
        self._transition(ConnectionState.AWAITING_PAIRING)

    def _on_opened(self) -> None:
        self._clear_pairing()
        self._attempts = 0
        self.session_invalidated = False
        self._retry_requested = False
        if not self._connecting:
            self._cancel_reconnect()
        logger.info("WhatsApp connection opened")
        self._transition(ConnectionState.CONNECTED)

    def _on_closed(self, reason_code: int | None) -> None:
        terminal = reason_code is not None and reason_code in self._terminal_reasons
        self._clear_pairing()
        self.last_close_reason = reason_code
        if terminal:
            self.session_invalidated = True
        self._transition(ConnectionState.DISCONNECTED)

        if self._stopping:
            logger.info("Connection closed during shutdown (reason=%s)", reason_code)
            return
        if terminal:
            logger.warning(
                "Session logged out (reason=%s); re-provision the auth state and restart",
                reason_code,
            )
            return

        delay = self._next_reconnect_delay()
        if self._schedule_reconnect(delay):
            logger.info(
                "Connection closed (reason=%s); reconnecting in %.1fs", reason_code, delay,
            )

    # --- Reconnect scheduling ---

    def _next_reconnect_delay(self) -> float:
        delay = self._reconnect_delay * (self._backoff_factor ** self._attempts)
        self._attempts += 1
        return min(delay, self._max_delay)

    def _schedule_reconnect(self, delay: float) -> bool:
        if self._stopping:
            return False
        if self.reconnect_pending:
            if self._connecting:
                self._retry_requested = True
            logger.debug("Reconnect already pending; not scheduling another")
            return False
        loop = asyncio.get_running_loop()
        self._reconnect_task = loop.create_task(self._reconnect_after(delay))
        return True

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # The task stays pending through the attempt so shutdown can cancel it
        self._connecting = True
        self._retry_requested = False
        try:
            succeeded = await self._attempt_connect()
        finally:
            self._connecting = False
        self._reconnect_task = None

        if not succeeded:
            self._schedule_reconnect(self._setup_retry_delay)
        elif self._retry_requested:
            self._retry_requested = False
            self._schedule_reconnect(self._next_reconnect_delay())

    async def _attempt_connect(self) -> bool:
        try:
            await self._connect()
        except Exception as exc:
            if not self._stopping:
                logger.error(
                    "%s; retrying in %.1fs", ConnectionSetupError(exc), self._setup_retry_delay,
                )
            return False
        return True

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    # --- Helpers ---

    def _clear_pairing(self) -> None:
        self._pairing_token = None
        self._pairing_image = None

    def _transition(self, new_state: ConnectionState) -> None:
        previous = self._state
        self._state = new_state
        for observer in list(self._observers):
            try:
                observer(previous, new_state)
            except Exception:
                logger.exception("Connection state observer failed")
