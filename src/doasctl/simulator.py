"""Virtual DOAS unit behind a serial-over-TCP converter.

Listens on a TCP port and answers register reads and writes the way
the real ventilation unit does, so the connector and CLI can be tried
without hardware.  Requests with a bad CRC or addressed to another
unit are ignored.

Usage:
    doasctl-sim --port 8899 --machine 1 [--noise]

Example:
    >>> device = SimulatedDevice(1, {0x01: 1})
    >>> device.handle(encode_frame(1, CMD_READ, read_payload(0x01)))[:5].hex(' ')
    '01 03 02 00 01'
"""

import argparse
import asyncio
import logging

from doasctl.protocol import (
    CMD_READ,
    CMD_WRITE,
    check_crc,
    encode_frame,
    read_payload,
    write_payload,
)

log = logging.getLogger(__name__)

# Full request lengths: ADDR + CMD + payload + CRC.
_REQUEST_LEN = {
    CMD_READ: 2 + len(read_payload(0)) + 2,
    CMD_WRITE: 2 + len(write_payload(0, 0)) + 2,
}

# Power off, direction 0, lowest speed tier.
DEFAULT_REGISTERS = {0x01: 0x00, 0x02: 0x00, 0x03: 0x01}


class SimulatedDevice:
    """Register file of one unit and its request handling.

    Args:
        addr: Address to answer as (int, 0-255).
        registers: Initial register values; defaults to DEFAULT_REGISTERS.
        noise: Bytes prepended to every reply to mimic line noise.
    """

    def __init__(self, addr, registers=None, noise=b""):
        self.addr = addr
        self.registers = dict(DEFAULT_REGISTERS if registers is None else registers)
        self.noise = noise
        self.requests = 0

    def handle(self, frame: bytes) -> bytes | None:
        """Return the reply to one complete request, or None."""
        if not check_crc(frame):
            log.debug("bad CRC: %s", frame.hex(" "))
            return None
        if frame[0] != self.addr:
            return None

        self.requests += 1
        cmd = frame[1]
        register = frame[3]
        if cmd == CMD_READ:
            value = self.registers.get(register, 0)
            log.info("read 0x%02X -> %d", register, value)
            reply = encode_frame(self.addr, CMD_READ, bytes([0x02, 0x00, value]))
        elif cmd == CMD_WRITE:
            value = frame[8]
            self.registers[register] = value
            log.info("write 0x%02X <- %d", register, value)
            reply = encode_frame(self.addr, CMD_WRITE, frame[2:6])
        else:
            return None
        return self.noise + reply


class SimulatorProtocol(asyncio.Protocol):
    """One converter connection: split the byte stream into requests."""

    def __init__(self, device: SimulatedDevice):
        self._device = device
        self._buffer = bytearray()
        self._transport = None

    def connection_made(self, transport) -> None:
        self._transport = transport
        log.info("client connected: %s", transport.get_extra_info("peername"))

    def connection_lost(self, exc) -> None:
        log.info("client disconnected")

    def data_received(self, data: bytes) -> None:
        self._buffer.extend(data)
        while len(self._buffer) >= 2:
            need = _REQUEST_LEN.get(self._buffer[1])
            if need is None:
                # Not a request we know; resync on the next byte.
                del self._buffer[0]
                continue
            if len(self._buffer) < need:
                break
            frame = bytes(self._buffer[:need])
            del self._buffer[:need]
            reply = self._device.handle(frame)
            if reply is not None:
                self._transport.write(reply)


async def serve(device: SimulatedDevice, host: str, port: int):
    """Start listening; returns the asyncio Server."""
    loop = asyncio.get_running_loop()
    return await loop.create_server(
        lambda: SimulatorProtocol(device), host, port
    )


async def _run(args) -> None:
    noise = b"\x00" if args.noise else b""
    device = SimulatedDevice(args.machine, noise=noise)
    server = await serve(device, args.host, args.port)
    log.info("simulator: machine=%d listening on %s:%d", args.machine, args.host, args.port)
    async with server:
        await server.serve_forever()


def main() -> None:
    """CLI entry point for the simulator."""
    parser = argparse.ArgumentParser(description="DOAS unit simulator")
    parser.add_argument("--host", default="127.0.0.1", help="interface to bind")
    parser.add_argument("--port", type=int, default=8899, help="TCP port")
    parser.add_argument("--machine", type=int, default=1, help="unit address")
    parser.add_argument(
        "--noise", action="store_true", help="prefix replies with a noise byte",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
