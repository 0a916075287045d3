"""
Tests for the transport connection manager.

Uses real loopback TCP servers and UDP sockets for the happy paths, and a
patched asyncio.open_connection for write failures and timeouts.

Tests verify:
- send() before open() raises NotConnected (no implicit connect).
- TCP open -> connected; bytes arrive at the server.
- Connect failure/timeout -> failed + ConnectError.
- Write failure/timeout -> failed + SendError; later sends raise NotConnected.
- UDP endpoint sends datagrams without a handshake.
- close() is idempotent; open() from failed re-establishes the session.

CHANGELOG:
- 2026-10-14: Cover asynchronous datagram errors (STORY-007)
- 2026-10-13: Initial creation -- TDD tests written first (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from smartmeter.src.config import EngineConfig
from smartmeter.src.connection import ConnectionManager
from smartmeter.src.errors import ConnectError, NotConnected, SendError
from smartmeter.src.models import ConnectionStatus, TransportKind

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _free_port() -> int:
    """Return a loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _start_tcp_server() -> tuple[asyncio.Server, int, asyncio.Queue[bytes]]:
    """Start a loopback TCP server that queues every chunk it receives."""
    received: asyncio.Queue[bytes] = asyncio.Queue()

    async def _handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while chunk := await reader.read(4096):
            await received.put(chunk)
        writer.close()

    server = await asyncio.start_server(_handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port, received


class _Collector(asyncio.DatagramProtocol):
    """UDP receiver that queues every datagram."""

    def __init__(self) -> None:
        self.received: asyncio.Queue[bytes] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self.received.put_nowait(data)


def _mock_writer(drain: object = None) -> MagicMock:
    """Create a mock StreamWriter; *drain* overrides the drain coroutine."""
    writer = MagicMock()
    writer.is_closing.return_value = False
    writer.write = MagicMock()
    writer.drain = drain if drain is not None else AsyncMock()
    writer.close = MagicMock()
    writer.wait_closed = AsyncMock()
    return writer


async def _hang(*args: object, **kwargs: object) -> None:
    await asyncio.sleep(10)


# ===========================================================================
# Not connected
# ===========================================================================


class TestNotConnected:
    """send() on a session that was never opened fails immediately."""

    def test_initial_status_is_disconnected(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=8094)
        assert conn.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_send_without_open_raises(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=8094)
        with pytest.raises(NotConnected):
            await conn.send(b"data")
        assert conn.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_send_does_not_connect_implicitly(self) -> None:
        with patch("smartmeter.src.connection.asyncio.open_connection") as mock_open:
            conn = ConnectionManager(host="127.0.0.1", port=8094)
            with pytest.raises(NotConnected):
                await conn.send(b"data")
            mock_open.assert_not_called()


# ===========================================================================
# TCP
# ===========================================================================


class TestTcpSession:
    """Persistent stream session against a loopback server."""

    @pytest.mark.asyncio
    async def test_open_and_send(self) -> None:
        server, port, received = await _start_tcp_server()
        async with server:
            conn = ConnectionManager(host="127.0.0.1", port=port)
            await conn.open()
            assert conn.status is ConnectionStatus.CONNECTED

            await conn.send(b"line one\n")
            data = await asyncio.wait_for(received.get(), timeout=2)
            assert data == b"line one\n"

            await conn.close()
            assert conn.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_open_twice_is_noop(self) -> None:
        server, port, _ = await _start_tcp_server()
        async with server:
            conn = ConnectionManager(host="127.0.0.1", port=port)
            await conn.open()
            with patch("smartmeter.src.connection.asyncio.open_connection") as mock_open:
                await conn.open()
                mock_open.assert_not_called()
            assert conn.status is ConnectionStatus.CONNECTED
            await conn.close()

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=_free_port())
        with pytest.raises(ConnectError) as exc_info:
            await conn.open()
        assert conn.status is ConnectionStatus.FAILED
        assert exc_info.value.port == conn.target[1]

    @pytest.mark.asyncio
    async def test_send_after_failed_open_is_not_connected(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=_free_port())
        with pytest.raises(ConnectError):
            await conn.open()
        with pytest.raises(NotConnected):
            await conn.send(b"data")

    @pytest.mark.asyncio
    async def test_connect_timeout(self) -> None:
        with patch("smartmeter.src.connection.asyncio.open_connection", side_effect=_hang):
            conn = ConnectionManager(host="10.255.255.1", port=8094, connect_timeout_s=0.05)
            with pytest.raises(ConnectError):
                await conn.open()
        assert conn.status is ConnectionStatus.FAILED

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes(self) -> None:
        server, port, received = await _start_tcp_server()
        async with server:
            async with ConnectionManager(host="127.0.0.1", port=port) as conn:
                assert conn.status is ConnectionStatus.CONNECTED
                await conn.send(b"x")
                assert await asyncio.wait_for(received.get(), timeout=2) == b"x"
            assert conn.status is ConnectionStatus.DISCONNECTED


class TestTcpSendFailure:
    """Write failures move the session to failed."""

    @pytest.mark.asyncio
    async def test_write_error_raises_send_error(self) -> None:
        writer = _mock_writer(drain=AsyncMock(side_effect=ConnectionResetError("reset")))
        with patch(
            "smartmeter.src.connection.asyncio.open_connection",
            AsyncMock(return_value=(MagicMock(), writer)),
        ):
            conn = ConnectionManager(host="127.0.0.1", port=8094)
            await conn.open()
            with pytest.raises(SendError):
                await conn.send(b"data")
        assert conn.status is ConnectionStatus.FAILED

    @pytest.mark.asyncio
    async def test_send_after_failure_is_not_connected(self) -> None:
        writer = _mock_writer(drain=AsyncMock(side_effect=BrokenPipeError("pipe")))
        with patch(
            "smartmeter.src.connection.asyncio.open_connection",
            AsyncMock(return_value=(MagicMock(), writer)),
        ):
            conn = ConnectionManager(host="127.0.0.1", port=8094)
            await conn.open()
            with pytest.raises(SendError):
                await conn.send(b"first")
            with pytest.raises(NotConnected):
                await conn.send(b"second")
        assert writer.write.call_count == 1

    @pytest.mark.asyncio
    async def test_write_timeout_raises_send_error(self) -> None:
        writer = _mock_writer(drain=_hang)
        with patch(
            "smartmeter.src.connection.asyncio.open_connection",
            AsyncMock(return_value=(MagicMock(), writer)),
        ):
            conn = ConnectionManager(host="127.0.0.1", port=8094, write_timeout_s=0.05)
            await conn.open()
            with pytest.raises(SendError):
                await conn.send(b"data")
        assert conn.status is ConnectionStatus.FAILED

    @pytest.mark.asyncio
    async def test_peer_closed_session(self) -> None:
        writer = _mock_writer()
        writer.is_closing.return_value = True
        with patch(
            "smartmeter.src.connection.asyncio.open_connection",
            AsyncMock(return_value=(MagicMock(), writer)),
        ):
            conn = ConnectionManager(host="127.0.0.1", port=8094)
            await conn.open()
            with pytest.raises(SendError):
                await conn.send(b"data")
        writer.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_reopen_from_failed(self) -> None:
        broken = _mock_writer(drain=AsyncMock(side_effect=ConnectionResetError("reset")))
        healthy = _mock_writer()
        with patch(
            "smartmeter.src.connection.asyncio.open_connection",
            AsyncMock(side_effect=[(MagicMock(), broken), (MagicMock(), healthy)]),
        ):
            conn = ConnectionManager(host="127.0.0.1", port=8094)
            await conn.open()
            with pytest.raises(SendError):
                await conn.send(b"data")

            await conn.open()
            assert conn.status is ConnectionStatus.CONNECTED
            broken.close.assert_called_once()

            await conn.send(b"again")
            healthy.write.assert_called_once_with(b"again")


# ===========================================================================
# UDP
# ===========================================================================


class TestUdpSession:
    """Connectionless datagrams addressed to the configured target."""

    @pytest.mark.asyncio
    async def test_open_and_send_datagram(self) -> None:
        loop = asyncio.get_running_loop()
        transport, collector = await loop.create_datagram_endpoint(_Collector, local_addr=("127.0.0.1", 0))
        port = transport.get_extra_info("sockname")[1]
        try:
            conn = ConnectionManager(host="127.0.0.1", port=port, kind=TransportKind.UDP)
            await conn.open()
            assert conn.status is ConnectionStatus.CONNECTED

            await conn.send(b"datagram payload")
            data = await asyncio.wait_for(collector.received.get(), timeout=2)
            assert data == b"datagram payload"
            await conn.close()
        finally:
            transport.close()

    @pytest.mark.asyncio
    async def test_open_needs_no_listener(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=_free_port(), kind=TransportKind.UDP)
        await conn.open()
        assert conn.status is ConnectionStatus.CONNECTED
        await conn.close()

    @pytest.mark.asyncio
    async def test_reported_error_surfaces_on_next_send(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=_free_port(), kind=TransportKind.UDP)
        await conn.open()
        conn._protocol.error_received(ConnectionRefusedError("refused"))  # type: ignore[union-attr]

        with pytest.raises(SendError):
            await conn.send(b"data")
        assert conn.status is ConnectionStatus.FAILED
        await conn.close()


# ===========================================================================
# close()
# ===========================================================================


class TestClose:
    """close() is idempotent and safe in any state."""

    @pytest.mark.asyncio
    async def test_close_never_opened(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=8094)
        await conn.close()
        await conn.close()
        assert conn.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_after_failure(self) -> None:
        conn = ConnectionManager(host="127.0.0.1", port=_free_port())
        with pytest.raises(ConnectError):
            await conn.open()
        await conn.close()
        assert conn.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_send_after_close_is_not_connected(self) -> None:
        writer = _mock_writer()
        with patch(
            "smartmeter.src.connection.asyncio.open_connection",
            AsyncMock(return_value=(MagicMock(), writer)),
        ):
            conn = ConnectionManager(host="127.0.0.1", port=8094)
            await conn.open()
            await conn.close()
            await conn.close()
        writer.close.assert_called_once()
        with pytest.raises(NotConnected):
            await conn.send(b"data")


class TestFromConfig:
    """from_config() picks up the transport target and deadlines."""

    def test_from_config(self) -> None:
        config = EngineConfig(
            target_host="ingest.local",
            target_port=9000,
            transport=TransportKind.UDP,
            connect_timeout_s=3.0,
        )
        conn = ConnectionManager.from_config(config)
        assert conn.target == ("ingest.local", 9000)
        assert conn.kind is TransportKind.UDP
        assert conn.status is ConnectionStatus.DISCONNECTED
