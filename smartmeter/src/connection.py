"""
Transport session manager for the ingestion endpoint.

Owns the only mutable I/O state of the engine: the connection status and the
transport handle. State machine::

    disconnected --open ok--> connected --close--> disconnected
    disconnected --open error--> failed
    connected --send error--> failed

Operations:
- open(): establish a TCP stream (bounded by connect_timeout_s) or create a
  UDP endpoint addressed to host:port (no handshake).
- send(data): write all bytes; a failure or timeout moves to ``failed``.
  Raises NotConnected immediately unless connected, never reconnecting on
  its own.
- close(): release the session; idempotent and never raises.

Reconnection is the caller's decision: ``open()`` from ``failed`` releases any
residue and establishes a fresh session.

CHANGELOG:
- 2026-10-14: Surface asynchronous datagram errors on the next send (STORY-007)
- 2026-10-13: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from smartmeter.src.errors import ConnectError, NotConnected, SendError
from smartmeter.src.models import ConnectionStatus, TransportKind

if TYPE_CHECKING:
    from smartmeter.src.config import EngineConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT_S: float = 10.0
"""Default connect and write deadline in seconds."""


class _DatagramProtocol(asyncio.DatagramProtocol):
    """Keeps the last error the OS reported for the UDP endpoint."""

    def __init__(self) -> None:
        self.error: Exception | None = None

    def error_received(self, exc: Exception) -> None:
        self.error = exc

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            self.error = exc


class ConnectionManager:
    """Stream or datagram session to the ingestion endpoint.

    Args:
        host: Endpoint host name or IP address.
        port: Endpoint port.
        kind: ``TransportKind.TCP`` or ``TransportKind.UDP``.
        connect_timeout_s: Deadline for establishing a TCP session.
        write_timeout_s: Deadline for draining a single TCP write.

    Usage::

        async with ConnectionManager(host="localhost", port=8094) as conn:
            await conn.send(b"realtime_readings p_active=1.0 0\\n")
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        kind: TransportKind = TransportKind.TCP,
        connect_timeout_s: float = DEFAULT_TIMEOUT_S,
        write_timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._host = host
        self._port = port
        self._kind = TransportKind(kind)
        self._connect_timeout_s = connect_timeout_s
        self._write_timeout_s = write_timeout_s
        self._status = ConnectionStatus.DISCONNECTED
        self._writer: asyncio.StreamWriter | None = None
        self._transport: asyncio.DatagramTransport | None = None
        self._protocol: _DatagramProtocol | None = None

    @classmethod
    def from_config(cls, config: EngineConfig) -> ConnectionManager:
        """Build a manager for the transport target of *config*."""
        return cls(
            host=config.target_host,
            port=config.target_port,
            kind=config.transport,
            connect_timeout_s=config.connect_timeout_s,
            write_timeout_s=config.write_timeout_s,
        )

    async def __aenter__(self) -> ConnectionManager:
        """Enter async context manager: open the session."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager: close the session."""
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        """Current session status."""
        return self._status

    @property
    def kind(self) -> TransportKind:
        """Transport kind of this session."""
        return self._kind

    @property
    def target(self) -> tuple[str, int]:
        """Configured ``(host, port)`` of the endpoint."""
        return self._host, self._port

    async def open(self) -> None:
        """Establish the session.

        A no-op when already connected. From ``failed`` the previous session
        is released first.

        Raises:
            ConnectError: If the session cannot be established in time. The
                status is ``failed`` afterwards.
        """
        if self._status is ConnectionStatus.CONNECTED:
            return
        if self._status is ConnectionStatus.FAILED:
            await self._release()

        try:
            if self._kind is TransportKind.TCP:
                _, self._writer = await asyncio.wait_for(
                    asyncio.open_connection(self._host, self._port),
                    timeout=self._connect_timeout_s,
                )
            else:
                loop = asyncio.get_running_loop()
                self._transport, self._protocol = await asyncio.wait_for(
                    loop.create_datagram_endpoint(
                        _DatagramProtocol,
                        remote_addr=(self._host, self._port),
                    ),
                    timeout=self._connect_timeout_s,
                )
        except (OSError, TimeoutError) as exc:
            self._status = ConnectionStatus.FAILED
            logger.warning(
                "Connection to %s:%d (%s) failed: %r",
                self._host,
                self._port,
                self._kind.value,
                exc,
            )
            raise ConnectError(
                f"Cannot open {self._kind.value} session to {self._host}:{self._port}: {exc!r}",
                host=self._host,
                port=self._port,
            ) from exc

        self._status = ConnectionStatus.CONNECTED
        logger.info("Opened %s session to %s:%d", self._kind.value, self._host, self._port)

    async def send(self, data: bytes) -> None:
        """Write *data* to the endpoint.

        Raises:
            NotConnected: If the session is not ``connected``.
            SendError: On a write failure or write timeout. The status is
                ``failed`` afterwards.
        """
        if self._status is not ConnectionStatus.CONNECTED:
            raise NotConnected(f"Session to {self._host}:{self._port} is {self._status.value}")

        try:
            if self._kind is TransportKind.TCP:
                assert self._writer is not None
                if self._writer.is_closing():
                    raise ConnectionResetError("session closed by peer")
                self._writer.write(data)
                await asyncio.wait_for(self._writer.drain(), timeout=self._write_timeout_s)
            else:
                assert self._transport is not None and self._protocol is not None
                pending, self._protocol.error = self._protocol.error, None
                if pending is not None:
                    raise pending
                self._transport.sendto(data)
        except (OSError, TimeoutError) as exc:
            self._status = ConnectionStatus.FAILED
            logger.warning("Send to %s:%d failed: %r", self._host, self._port, exc)
            raise SendError(
                f"Write to {self._host}:{self._port} failed: {exc!r}",
                host=self._host,
                port=self._port,
            ) from exc

        logger.debug("Sent %d bytes to %s:%d", len(data), self._host, self._port)

    async def close(self) -> None:
        """Release the session and return to ``disconnected``.

        Safe to call in any state, any number of times.
        """
        released = await self._release()
        self._status = ConnectionStatus.DISCONNECTED
        if released:
            logger.info("Closed %s session to %s:%d", self._kind.value, self._host, self._port)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _release(self) -> bool:
        """Close any transport handle; return True if one was held."""
        writer, transport = self._writer, self._transport
        self._writer = None
        self._transport = None
        self._protocol = None

        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug("Error while closing stream: %r", exc)
        if transport is not None:
            transport.close()
        return writer is not None or transport is not None
