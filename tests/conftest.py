"""Shared pytest fixtures and test doubles for doasctl tests."""

import socket

import pytest

from doasctl.connector import Connector
from doasctl.protocol import CMD_READ, encode_frame


def make_read_reply(addr: int, value: int) -> bytes:
    """Build a valid read reply carrying *value* at offset 4."""
    return encode_frame(addr, CMD_READ, bytes([0x02, 0x00, value]))


def find_free_port() -> int:
    """Find an available TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class FakeHandle:
    """Timer handle returned by FakeLoop.call_later."""

    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTask:
    """Stand-in for the connect task; already finished."""

    def done(self):
        return True

    def cancel(self):
        return False


class FakeLoop:
    """Event loop double with a manual clock.

    Timers run only when the test calls ``advance``.  Connect attempts
    are counted, not performed; tests call ``connection_made`` on the
    connector themselves.
    """

    def __init__(self):
        self.now = 0.0
        self.connects = 0
        self._timers = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.now + delay, callback, args)
        self._timers.append(handle)
        return handle

    def create_task(self, coro):
        coro.close()
        self.connects += 1
        return FakeTask()

    def advance(self, seconds):
        """Move the clock forward, running timers that come due in order."""
        target = self.now + seconds
        while True:
            due = [h for h in self._timers if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._timers.remove(handle)
            self.now = handle.when
            handle.callback(*handle.args)
        self.now = target

    def live_timers(self):
        return [h for h in self._timers if not h.cancelled]


class FakeTransport:
    """Transport double: records writes and close/abort calls."""

    def __init__(self):
        self.written = []
        self.closing = False
        self.aborted = False

    def write(self, data):
        self.written.append(bytes(data))

    def is_closing(self):
        return self.closing

    def abort(self):
        self.aborted = True
        self.closing = True

    def close(self):
        self.closing = True

    def get_extra_info(self, name, default=None):
        return default


@pytest.fixture
def loop():
    return FakeLoop()


@pytest.fixture
def connector(loop):
    """A connector on the fake loop, not yet connected."""
    return Connector("10.0.0.5", 8899, 0x01, loop=loop)


@pytest.fixture
def transport(connector):
    """Connect *connector* to a fresh FakeTransport and return it."""
    transport = FakeTransport()
    connector.connection_made(transport)
    return transport
