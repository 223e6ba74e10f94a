"""TCP to RS-485 byte bridge over a local serial adapter.

Stands in for a hardware serial-server when the unit's RS-485 bus is
wired to a USB adapter on this machine: one TCP client at a time gets
a transparent byte pipe to the serial port.  No framing is applied in
either direction.

Example:
    >>> from doasctl.gateway import SerialGateway
    >>> gw = SerialGateway("/dev/ttyUSB0", 9600, "0.0.0.0", 8899)
    >>> # Connector("this-host", 8899, 1) now reaches the bus...
    >>> gw.close()
"""

import logging
import socket
import threading

import serial

log = logging.getLogger(__name__)

# Poll interval for the accept, socket and serial loops, in seconds.
_POLL_S = 0.1
_CHUNK = 256


class SerialGateway:
    """Pump bytes between a TCP client and a serial port.

    A new client replaces the current one, matching converters that
    only serve a single master.

    Args:
        serial_port: Serial device path (e.g. ``"/dev/ttyUSB0"``).
        baudrate: Baud rate of the RS-485 bus (e.g. ``9600``).
        host: Interface to bind (e.g. ``"0.0.0.0"``).
        port: TCP port to listen on; 0 picks a free one.
    """

    def __init__(self, serial_port: str, baudrate: int, host: str, port: int):
        self._ser = serial.Serial(serial_port, baudrate, timeout=_POLL_S)
        self._client: socket.socket | None = None
        self._client_threads: list[threading.Thread] = []
        self._lock = threading.Lock()

        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind((host, port))
        self._server.listen(1)
        self._server.settimeout(_POLL_S)

        self._running = True
        self._threads = [
            threading.Thread(target=self._accept_loop, daemon=True),
            threading.Thread(target=self._serial_loop, daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        log.info(
            "gateway: %s@%d <-> %s:%d",
            serial_port, baudrate, host, self.address[1],
        )

    @property
    def address(self) -> tuple[str, int]:
        """The ``(host, port)`` the gateway is listening on."""
        return self._server.getsockname()

    def _accept_loop(self) -> None:
        """Background thread: accept clients, replacing the current one."""
        while self._running:
            try:
                conn, peer = self._server.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            conn.settimeout(_POLL_S)
            with self._lock:
                old = self._client
                self._client = conn
            if old is not None:
                try:
                    old.close()
                except OSError:
                    pass
            log.info("client connected: %s:%d", *peer)
            thread = threading.Thread(
                target=self._client_loop, args=(conn,), daemon=True,
                name="gateway-client-%s:%d" % peer[:2],
            )
            with self._lock:
                # Replaced clients' threads exit on their own; forget them.
                self._client_threads = [
                    t for t in self._client_threads if t.is_alive()
                ]
                self._client_threads.append(thread)
            thread.start()

    def _client_loop(self, conn: socket.socket) -> None:
        """Background thread: forward one client's bytes to the bus."""
        while self._running:
            try:
                data = conn.recv(_CHUNK)
            except socket.timeout:
                continue
            except OSError:
                break
            if not data:
                break
            log.debug("tcp -> serial: %s", data.hex(" "))
            self._ser.write(data)
            self._ser.flush()
        self._drop(conn)

    def _serial_loop(self) -> None:
        """Background thread: forward bus bytes to the current client."""
        while self._running:
            data = self._ser.read(self._ser.in_waiting or 1)
            if not data:
                continue
            with self._lock:
                conn = self._client
            if conn is None:
                log.debug("no client, dropping %d byte(s)", len(data))
                continue
            log.debug("serial -> tcp: %s", data.hex(" "))
            try:
                conn.sendall(data)
            except OSError:
                self._drop(conn)

    def _drop(self, conn: socket.socket) -> None:
        """Forget *conn* if it is still the current client."""
        with self._lock:
            if self._client is conn:
                self._client = None
                log.info("client disconnected")
        try:
            conn.close()
        except OSError:
            pass

    def close(self) -> None:
        """Stop the threads and close the server, client and port."""
        self._running = False
        for thread in self._threads:
            thread.join(timeout=1.0)
        # The accept thread is stopped, so no new client threads appear.
        with self._lock:
            client_threads = list(self._client_threads)
            self._client_threads = []
        for thread in client_threads:
            thread.join(timeout=1.0)

        with self._lock:
            client = self._client
            self._client = None
        if client is not None:
            try:
                client.close()
            except OSError:
                pass

        try:
            self._server.close()
        except OSError:
            pass
        self._ser.close()
