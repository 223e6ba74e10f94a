"""Single-register read and write on top of a Connector.

``read_pos`` and ``write_pos`` keep the connector's callback contract:
the callback fires at most once and may never fire.  ``read`` and
``write`` wrap the same requests in a coroutine that always finishes,
with a Result saying whether the device answered.

Example:
    >>> registers = RegisterClient(connector)
    >>> result = await registers.read(0x03, timeout=5.0)
    >>> result.status, result.value
    (<Status.RESOLVED: 'resolved'>, 2)
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from doasctl.protocol import (
    CMD_READ,
    CMD_WRITE,
    READ_VALUE_OFFSET,
    read_payload,
    write_payload,
)

log = logging.getLogger(__name__)


class Status(Enum):
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Result:
    """Outcome of a request: a value, or nothing because it was given up."""

    status: Status
    value: Any = None

    @property
    def resolved(self) -> bool:
        return self.status is Status.RESOLVED

    def map(self, func: Callable[[Any], Any]) -> "Result":
        """Apply *func* to the value of a resolved result."""
        if not self.resolved:
            return self
        return Result(Status.RESOLVED, func(self.value))


ABANDONED = Result(Status.ABANDONED)


class RegisterClient:
    """Register operations for the device a connector is bound to.

    Args:
        connector: Object with ``address`` and ``send_raw(...)``.
    """

    def __init__(self, connector):
        self._connector = connector

    @property
    def address(self) -> int:
        return self._connector.address

    def read_pos(self, position: int, callback, on_abandon=None) -> None:
        """Read one holding register; *callback* receives its value."""

        def on_reply(data: bytes) -> None:
            if len(data) <= READ_VALUE_OFFSET:
                log.debug(
                    "short reply for register 0x%02X: %s",
                    position, data.hex(" "),
                )
                if on_abandon is not None:
                    on_abandon()
                return
            callback(data[READ_VALUE_OFFSET])

        self._connector.send_raw(
            self.address, CMD_READ, read_payload(position), on_reply, on_abandon,
        )

    def write_pos(self, position: int, value: int, callback, on_abandon=None) -> None:
        """Write one register; *callback* is called with no arguments."""
        self._connector.send_raw(
            self.address, CMD_WRITE, write_payload(position, value),
            lambda data: callback(), on_abandon,
        )

    async def read(self, position: int, timeout=None) -> Result:
        """Read a register, giving up after *timeout* seconds."""
        return await self._wait(
            lambda done, abandon: self.read_pos(position, done, abandon),
            timeout,
        )

    async def write(self, position: int, value: int, timeout=None) -> Result:
        """Write a register, giving up after *timeout* seconds."""
        return await self._wait(
            lambda done, abandon: self.write_pos(position, value, done, abandon),
            timeout,
        )

    async def _wait(self, start, timeout) -> Result:
        future = asyncio.get_running_loop().create_future()

        def done(value=None):
            if not future.done():
                future.set_result(Result(Status.RESOLVED, value))

        def abandon():
            if not future.done():
                future.set_result(ABANDONED)

        start(done, abandon)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            log.debug("no reply from 0x%02X within %ss", self.address, timeout)
            return ABANDONED
