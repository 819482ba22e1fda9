"""Tests for the connection state machine and its reconnect policy."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models import ConnectionState, DisconnectReason
from src.session.events import Closed, Opened, PairingChallengeIssued
from src.session.state_machine import ConnectionStateMachine
from tests.conftest import render_stub


def _make_machine(connect: Any = None, **kwargs: Any) -> ConnectionStateMachine:
    defaults: dict[str, Any] = {
        "reconnect_delay": 0.01,
        "setup_retry_delay": 0.01,
        "renderer": render_stub,
    }
    defaults.update(kwargs)
    return ConnectionStateMachine(connect or AsyncMock(), **defaults)


class TestTransitions:
    def test_starts_disconnected(self) -> None:
        machine = _make_machine()
        assert machine.state is ConnectionState.DISCONNECTED
        assert machine.pairing_challenge is None
        assert not machine.connected

    @pytest.mark.asyncio
    async def test_pairing_challenge_stores_rendered_token(self) -> None:
        machine = _make_machine()
        machine.on_external_event(PairingChallengeIssued("abc123"))
        assert machine.state is ConnectionState.AWAITING_PAIRING
        assert machine.pairing_token == "abc123"
        assert machine.pairing_challenge == "data:image/svg+xml;base64,abc123"

    @pytest.mark.asyncio
    async def test_opened_clears_pairing(self) -> None:
        machine = _make_machine()
        machine.on_external_event(PairingChallengeIssued("abc123"))
        machine.on_external_event(Opened())
        assert machine.connected
        assert machine.pairing_token is None
        assert machine.pairing_challenge is None

    @pytest.mark.asyncio
    async def test_closed_clears_pairing(self) -> None:
        machine = _make_machine()
        machine.on_external_event(PairingChallengeIssued("abc123"))
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_LOST)))
        assert machine.state is ConnectionState.DISCONNECTED
        assert machine.pairing_challenge is None
        assert machine.last_close_reason == 408

    @pytest.mark.asyncio
    async def test_render_failure_keeps_state_without_image(self) -> None:
        renderer = MagicMock(side_effect=ValueError("bad token"))
        machine = _make_machine(renderer=renderer)
        machine.on_external_event(PairingChallengeIssued("abc123"))
        assert machine.state is ConnectionState.AWAITING_PAIRING
        assert machine.pairing_challenge is None

    @pytest.mark.asyncio
    async def test_observers_notified(self) -> None:
        machine = _make_machine()
        observer = MagicMock()
        machine.add_observer(observer)
        machine.on_external_event(Opened())
        observer.assert_called_once_with(ConnectionState.DISCONNECTED, ConnectionState.CONNECTED)

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_transition(self) -> None:
        machine = _make_machine()
        machine.add_observer(MagicMock(side_effect=RuntimeError("boom")))
        machine.on_external_event(Opened())
        assert machine.connected


class TestReconnect:
    @pytest.mark.asyncio
    async def test_non_logout_close_schedules_one_reconnect(self) -> None:
        connect = AsyncMock()
        machine = _make_machine(connect)
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_CLOSED)))
        assert machine.reconnect_pending

        await asyncio.sleep(0.05)
        assert connect.await_count == 1
        assert not machine.reconnect_pending

    @pytest.mark.asyncio
    async def test_second_close_while_pending_does_not_add_timer(self) -> None:
        connect = AsyncMock()
        machine = _make_machine(connect, reconnect_delay=0.05)
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_LOST)))
        first_task = machine._reconnect_task
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_LOST)))
        assert machine._reconnect_task is first_task

        await asyncio.sleep(0.15)
        assert connect.await_count == 1

    @pytest.mark.asyncio
    async def test_logged_out_is_terminal(self) -> None:
        connect = AsyncMock()
        machine = _make_machine(connect)
        machine.on_external_event(Closed(int(DisconnectReason.LOGGED_OUT)))
        assert machine.session_invalidated
        assert not machine.reconnect_pending

        await asyncio.sleep(0.05)
        connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_reason_reconnects(self) -> None:
        machine = _make_machine()
        machine.on_external_event(Closed(None))
        assert machine.reconnect_pending
        machine.begin_shutdown()

    @pytest.mark.asyncio
    async def test_setup_error_retries_without_raising(self) -> None:
        connect = AsyncMock(side_effect=[OSError("bridge down"), OSError("still down"), None])
        machine = _make_machine(connect)

        await machine.start()  # must not raise
        assert machine.reconnect_pending

        await asyncio.sleep(0.1)
        assert connect.await_count == 3
        assert not machine.reconnect_pending

    @pytest.mark.asyncio
    async def test_flat_backoff_by_default(self) -> None:
        machine = _make_machine(reconnect_delay=5.0)
        assert [machine._next_reconnect_delay() for _ in range(3)] == [5.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_exponential_backoff_is_capped(self) -> None:
        machine = _make_machine(reconnect_delay=5.0, backoff_factor=2.0, max_delay=30.0)
        delays = [machine._next_reconnect_delay() for _ in range(5)]
        assert delays == [5.0, 10.0, 20.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_opened_resets_backoff(self) -> None:
        machine = _make_machine(reconnect_delay=1.0, backoff_factor=2.0)
        machine._next_reconnect_delay()
        machine._next_reconnect_delay()
        machine.on_external_event(Opened())
        assert machine._next_reconnect_delay() == 1.0


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_reconnect(self) -> None:
        connect = AsyncMock()
        machine = _make_machine(connect, reconnect_delay=0.05)
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_LOST)))
        machine.begin_shutdown()
        assert machine.state is ConnectionState.CLOSING
        assert not machine.reconnect_pending

        await asyncio.sleep(0.1)
        connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_during_shutdown_does_not_reconnect(self) -> None:
        machine = _make_machine()
        machine.on_external_event(Opened())
        machine.begin_shutdown()
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_CLOSED)))
        assert not machine.reconnect_pending
        machine.finish_shutdown()
        assert machine.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_pairing_ignored_while_closing(self) -> None:
        machine = _make_machine()
        machine.begin_shutdown()
        machine.on_external_event(PairingChallengeIssued("late"))
        assert machine.state is ConnectionState.CLOSING
        assert machine.pairing_token is None

    @pytest.mark.asyncio
    async def test_shutdown_cancels_in_flight_reconnect_attempt(self) -> None:
        finished: list[bool] = []

        async def slow_connect() -> None:
            await asyncio.sleep(10)
            finished.append(True)

        machine = _make_machine(slow_connect)
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_LOST)))
        await asyncio.sleep(0.03)
        attempt = machine._reconnect_task
        assert attempt is not None and machine._connecting

        machine.begin_shutdown()
        await asyncio.sleep(0.01)

        assert attempt.cancelled()
        assert finished == []
        assert not machine.reconnect_pending


class TestReconnectDuringAttempt:
    @pytest.mark.asyncio
    async def test_close_during_attempt_reconnects_again(self) -> None:
        calls: list[int] = []

        async def connect() -> None:
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(0.03)

        machine = _make_machine(connect)
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_CLOSED)))
        await asyncio.sleep(0.02)
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_LOST)))

        await asyncio.sleep(0.1)
        assert len(calls) == 2
        assert not machine.reconnect_pending

    @pytest.mark.asyncio
    async def test_open_during_attempt_does_not_cancel_it(self) -> None:
        finished: list[bool] = []

        async def connect() -> None:
            await asyncio.sleep(0.05)
            finished.append(True)

        machine = _make_machine(connect)
        machine.on_external_event(Closed(int(DisconnectReason.CONNECTION_LOST)))
        await asyncio.sleep(0.02)
        machine.on_external_event(Opened())

        await asyncio.sleep(0.1)
        assert finished == [True]
        assert machine.connected
        assert not machine.reconnect_pending
