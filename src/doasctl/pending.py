"""Outstanding-request bookkeeping, one slot per device address.

The link carries no request IDs, so a reply can only be attributed by
its address and command bytes.  Allowing a single in-flight request per
address keeps that attribution unambiguous.

Example:
    >>> table = PendingTable()
    >>> entry = table.add(1, 0x03, print, now=10.0)
    >>> table.match(1, 0x03) is entry
    True
    >>> table.is_stale(entry, now=13.5, max_age=3.0)
    True
"""

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(eq=False)
class PendingRequest:
    """A request waiting for its reply.

    Attributes:
        command: Command byte the reply must carry.
        callback: Called once with the reply bytes.
        created_at: Event-loop time the request was registered.
        on_abandon: Called with no arguments if the request is dropped
            without a reply.
        done: Set once the reply has been delivered.
    """

    command: int
    callback: Callable[[bytes], None]
    created_at: float
    on_abandon: Optional[Callable[[], None]] = None
    done: bool = False

    def abandon(self) -> None:
        """Notify the abandonment handler unless a reply was delivered."""
        if self.done:
            return
        self.done = True
        if self.on_abandon is not None:
            self.on_abandon()


class PendingTable:
    """Map from device address to its single outstanding request."""

    def __init__(self):
        self._entries: dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, addr: int) -> bool:
        return addr in self._entries

    def get(self, addr: int) -> PendingRequest | None:
        """Return the entry occupying *addr*, or None."""
        return self._entries.get(addr)

    def is_stale(self, entry: PendingRequest, now: float, max_age: float) -> bool:
        """True if *entry* has been outstanding longer than *max_age*."""
        return now - entry.created_at > max_age

    def add(self, addr, command, callback, now, on_abandon=None) -> PendingRequest:
        """Register a request for *addr*.

        Raises:
            ValueError: If *addr* already has an outstanding request.
        """
        if addr in self._entries:
            raise ValueError("address 0x{:02X} already has a pending request".format(addr))
        entry = PendingRequest(command, callback, now, on_abandon)
        self._entries[addr] = entry
        return entry

    def match(self, addr: int, command: int) -> PendingRequest | None:
        """Return the undelivered entry for *addr* expecting *command*."""
        entry = self._entries.get(addr)
        if entry is None or entry.done or entry.command != command:
            return None
        return entry

    def remove(self, addr: int, entry: PendingRequest) -> bool:
        """Drop *entry* from *addr* if it still holds that slot."""
        if self._entries.get(addr) is entry:
            del self._entries[addr]
            return True
        return False

    def evict(self, addr: int) -> PendingRequest | None:
        """Remove and abandon whatever occupies *addr*."""
        entry = self._entries.pop(addr, None)
        if entry is not None:
            entry.abandon()
        return entry

    def starts(self) -> set[tuple[int, int]]:
        """``(addr, command)`` pairs still awaiting a reply."""
        return {
            (addr, entry.command)
            for addr, entry in self._entries.items()
            if not entry.done
        }

    def clear(self) -> None:
        """Empty the table, abandoning every undelivered request."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.abandon()
