"""TCP connection manager for the RS-485 register tunnel.

One Connector owns one TCP connection to a serial-over-IP converter
and talks to the device behind it.  The wire carries bare frames with
no delimiters, so replies are attributed by address and command alone
and at most one request per address is kept in flight.

Everything runs on a single asyncio event loop.  Sends return
immediately; a reply reaches the caller through the callback given to
``send_raw``.  A request may never be answered: if the connection drops
the pending table is cleared and the callback is simply not called.
Callers that need a bound arm their own timer (see
``doasctl.registers.RegisterClient.read``).

Example:
    >>> connector = Connector("192.168.1.50", 8899, 1)
    >>> connector.send_raw(1, CMD_READ, read_payload(0x02), print)
"""

import asyncio
import logging
from enum import Enum

from doasctl.config import (
    BUSY_RETRY_S,
    GRACE_S,
    HEARTBEAT_S,
    RECONNECT_S,
    STALE_S,
)
from doasctl.pending import PendingTable
from doasctl.protocol import (
    CMD_READ,
    encode_frame,
    is_valid_address,
    read_payload,
    strip_noise,
)

log = logging.getLogger(__name__)

# Register polled by the heartbeat.
HEARTBEAT_REGISTER = 0x01


class ConnectionState(Enum):
    """Lifecycle of the connector's TCP link."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class _Generation:
    """Timers scheduled on behalf of one established connection.

    Each successful connect gets a fresh generation; tearing the
    connection down cancels everything it scheduled, so no grace
    deletion, deferred send or heartbeat outlives its connection.
    """

    def __init__(self, loop, number: int):
        self.number = number
        self._loop = loop
        self._handles = {}

    def call_later(self, delay, callback, *args, on_cancel=None):
        """Schedule *callback* and remember it until it fires."""
        handle = None

        def fire():
            self._handles.pop(handle, None)
            callback(*args)

        handle = self._loop.call_later(delay, fire)
        self._handles[handle] = on_cancel
        return handle

    def cancel(self) -> None:
        """Cancel every outstanding timer of this generation."""
        handles = list(self._handles.items())
        self._handles.clear()
        for handle, on_cancel in handles:
            handle.cancel()
            if on_cancel is not None:
                on_cancel()

    def __len__(self) -> int:
        return len(self._handles)


class Connector(asyncio.Protocol):
    """Serialized request/reply access to one device over TCP.

    Construction immediately starts connecting, so it must happen with
    an event loop available (either running, or passed as *loop*).

    Args:
        host: Converter host name or IP address.
        port: Converter TCP port.
        address: Device address this connector is bound to (0-255).
        logger: Logger to use; defaults to this module's logger.
        loop: Event loop; defaults to the running loop.
        reconnect_on_close: Also reconnect after a close that carried
            no error.  Off by default: only errors trigger a reconnect.

    Raises:
        ValueError: If *address* is outside 0-255.
    """

    def __init__(self, host, port, address, logger=None, *, loop=None,
                 reconnect_on_close=False):
        if not is_valid_address(address):
            raise ValueError("address must be in range 0-255, got %r" % (address,))
        self.host = host
        self.port = port
        self.address = address
        self._log = logger or log
        self._loop = loop or asyncio.get_running_loop()
        self._reconnect_on_close = reconnect_on_close

        self._transport = None
        self._state = ConnectionState.DISCONNECTED
        self._pending = PendingTable()
        self._generation = None
        self._generations = 0
        self._reconnect = None
        self._connect_task = None
        self._closed = False
        self._connected = asyncio.Event()

        self._connect()

    # -- Introspection -------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pending(self) -> PendingTable:
        """The pending-request table (read-only use)."""
        return self._pending

    @property
    def generation(self) -> int:
        """Number of the current connection, 0 before the first."""
        return self._generation.number if self._generation else 0

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect is not None

    async def wait_connected(self, timeout=None) -> bool:
        """Wait until the link is up; False if *timeout* expires first."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # -- Connection lifecycle ------------------------------------------------

    def _connect(self) -> None:
        """Start an asynchronous connect attempt."""
        self._reconnect = None
        if self._closed:
            return
        self._state = ConnectionState.CONNECTING
        self._log.info("connecting to %s:%d", self.host, self.port)
        self._connect_task = self._loop.create_task(self._open())

    async def _open(self) -> None:
        try:
            await self._loop.create_connection(lambda: self, self.host, self.port)
        except (OSError, ValueError) as exc:
            # ValueError: host name that cannot be encoded (IDNA).
            self._log.warning(
                "connect to %s:%d failed: %s", self.host, self.port, exc
            )
            self._state = ConnectionState.DISCONNECTED
            self._schedule_reconnect()

    def connection_made(self, transport) -> None:
        if self._closed:
            transport.close()
            return
        self._transport = transport
        self._state = ConnectionState.CONNECTED
        self._generations += 1
        self._generation = _Generation(self._loop, self._generations)
        self._generation.call_later(HEARTBEAT_S, self._heartbeat)
        self._connected.set()
        self._log.info(
            "connected to %s:%d (generation %d)",
            self.host, self.port, self._generations,
        )

    def connection_lost(self, exc) -> None:
        if self._closed:
            self._teardown()
            self._log.info("connection to %s:%d closed", self.host, self.port)
            return

        if exc is not None:
            self._on_error(exc)
            return

        self._log.info(
            "connection to %s:%d closed by peer", self.host, self.port
        )
        self._teardown()
        if self._reconnect_on_close:
            self._schedule_reconnect()

    def _on_error(self, exc) -> None:
        """Transport failure: drop everything and retry later."""
        self._log.warning(
            "connection to %s:%d failed: %s", self.host, self.port, exc
        )
        if self._transport is None:
            # Already torn down; a reconnect is scheduled or in flight.
            return
        self._teardown()
        self._schedule_reconnect()

    def _teardown(self) -> None:
        """Destroy the socket, cancel its timers and clear the table."""
        transport = self._transport
        self._transport = None
        self._connected.clear()
        if transport is not None and not transport.is_closing():
            transport.abort()
        if self._generation is not None:
            self._generation.cancel()
            self._generation = None
        self._pending.clear()
        self._state = ConnectionState.DISCONNECTED

    def _schedule_reconnect(self) -> None:
        # One reconnect sequence at a time.
        if self._closed or self._reconnect is not None:
            return
        if self._state is ConnectionState.CONNECTING:
            return
        self._log.info("reconnecting in %.1fs", RECONNECT_S)
        self._reconnect = self._loop.call_later(RECONNECT_S, self._connect)

    def close(self) -> None:
        """Close the link for good; no further reconnects are made."""
        if self._closed:
            return
        self._closed = True
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        if self._transport is not None:
            self._state = ConnectionState.CLOSING
            self._transport.close()
        else:
            self._teardown()

    # -- Heartbeat -----------------------------------------------------------

    def _heartbeat(self) -> None:
        """Read the liveness register and re-arm."""
        if self._state is not ConnectionState.CONNECTED:
            return
        self._log.debug("heartbeat to 0x%02X", self.address)
        self.send_raw(
            self.address, CMD_READ, read_payload(HEARTBEAT_REGISTER),
            lambda data: None,
        )
        self._generation.call_later(HEARTBEAT_S, self._heartbeat)

    # -- Inbound -------------------------------------------------------------

    def data_received(self, data: bytes) -> None:
        if self._generation is None:
            return
        self._log.debug("received: %s", data.hex(" "))
        frame = strip_noise(data, self._pending.starts())
        if len(frame) < 2:
            self._log.debug("discarding %d byte(s) of noise", len(data))
            return

        addr, cmd = frame[0], frame[1]
        entry = self._pending.match(addr, cmd)
        if entry is None:
            self._log.debug("unmatched reply 0x%02X/0x%02X", addr, cmd)
            return

        entry.done = True
        self._generation.call_later(GRACE_S, self._pending.remove, addr, entry)
        try:
            entry.callback(frame)
        except Exception:
            self._log.exception("reply handler for 0x%02X failed", addr)

    # -- Outbound ------------------------------------------------------------

    def send_raw(self, address, command, payload, callback, on_abandon=None):
        """Send a request and deliver its reply to *callback*.

        The frame is written right away if *address* has no request in
        flight.  If it does, the send is retried every BUSY_RETRY_S
        until the slot frees up or the occupant is older than STALE_S,
        in which case it is evicted.

        Requests made while the link is down are logged and dropped.
        *callback* receives the noise-stripped reply at most once and
        is never called for a request that is dropped or abandoned;
        *on_abandon*, if given, is called instead.

        Args:
            address: Device address (0-255).
            command: Command byte; the reply must carry the same one.
            payload: Request payload bytes.
            callback: Called with the reply bytes.
            on_abandon: Called with no arguments if the request is
                given up without a reply.

        Raises:
            ValueError: If the frame cannot be encoded.
        """
        frame = encode_frame(address, command, payload)

        transport = self._transport
        if (transport is None or transport.is_closing()
                or self._state is not ConnectionState.CONNECTED):
            self._log.warning(
                "not connected, dropping 0x%02X request to 0x%02X",
                command, address,
            )
            if on_abandon is not None:
                on_abandon()
            return

        now = self._loop.time()
        entry = self._pending.get(address)
        if entry is not None:
            if not self._pending.is_stale(entry, now, STALE_S):
                self._log.debug(
                    "address 0x%02X busy, retrying in %.1fs",
                    address, BUSY_RETRY_S,
                )
                self._generation.call_later(
                    BUSY_RETRY_S, self.send_raw,
                    address, command, payload, callback, on_abandon,
                    on_cancel=on_abandon,
                )
                return
            self._log.debug(
                "evicting stale 0x%02X request to 0x%02X",
                entry.command, address,
            )
            self._pending.evict(address)

        self._pending.add(address, command, callback, now, on_abandon)
        self._log.debug("sent: %s", frame.hex(" "))
        transport.write(frame)
