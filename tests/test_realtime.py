"""Tests for the WebSocket connection manager."""

from unittest.mock import AsyncMock

import pytest

from trainfit.realtime import ConnectionManager, user_channel


def _socket(fail: bool = False) -> AsyncMock:
    ws = AsyncMock()
    if fail:
        ws.send_json.side_effect = RuntimeError("closed")
    return ws


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_connect_greets_and_registers(self):
        manager = ConnectionManager()
        ws = _socket()

        await manager.connect(ws, "user-1")

        ws.accept.assert_awaited_once()
        greeting = ws.send_json.await_args.args[0]
        assert greeting["type"] == "connection_established"
        assert ws in manager.channels["user-1"]

    @pytest.mark.asyncio
    async def test_emit_only_reaches_channel(self):
        manager = ConnectionManager()
        mine, other = _socket(), _socket()
        await manager.connect(mine, "user-1")
        await manager.connect(other, "user-2")

        sent = await manager.emit("user-1", "payment-updated", {"status": "paid"})

        assert sent == 1
        message = mine.send_json.await_args.args[0]
        assert message["type"] == "payment-updated"
        assert message["data"] == {"status": "paid"}
        assert other.send_json.await_count == 1  # greeting only

    @pytest.mark.asyncio
    async def test_dead_sockets_are_dropped(self):
        manager = ConnectionManager()
        ws = _socket()
        await manager.connect(ws, "user-1")
        ws.send_json.side_effect = RuntimeError("closed")

        assert await manager.emit("user-1", "payment-updated", {}) == 0
        assert "user-1" not in manager.channels

    @pytest.mark.asyncio
    async def test_emit_to_empty_channel(self):
        assert await ConnectionManager().emit("user-9", "payment-updated", {}) == 0

    def test_disconnect_unknown_is_noop(self):
        ConnectionManager().disconnect(_socket(), "user-1")


def test_user_channel_name():
    assert user_channel("abc") == "user-abc"
