"""Frame encoding and noise handling for the DOAS RS-485 register protocol.

Frames travel over a raw TCP tunnel with no start byte or length field:
ADDR, CMD, PAYLOAD, CRC_HI, CRC_LO.  The receiver relies on the
address and command bytes to correlate a reply with its request.

Example:
    >>> from doasctl.protocol import encode_frame, read_payload, CMD_READ
    >>> encode_frame(1, CMD_READ, read_payload(0x00)).hex(' ')
    '01 03 00 00 00 01 0a 84'
    >>> strip_noise(bytes([0x00, 0x05, 0x10, 0x20])).hex(' ')
    '10 20'
"""

# -- Protocol constants ------------------------------------------------------

CMD_READ = 0x03
CMD_WRITE = 0x10

# Leading bytes at or below this value are line noise, not data.
NOISE_MAX = 0x0F

# Offset of the register value in a read reply.
READ_VALUE_OFFSET = 4

ADDR_MIN = 0
ADDR_MAX = 255


def is_valid_address(addr: int) -> bool:
    """Check whether *addr* fits in a single address byte (0-255)."""
    return ADDR_MIN <= addr <= ADDR_MAX


# -- CRC-16/MODBUS -----------------------------------------------------------


def crc16_modbus(data) -> int:
    """Compute CRC-16/MODBUS over a byte sequence.

    Uses the reflected polynomial 0xA001 with initial value 0xFFFF,
    processing each byte least significant bit first.  Bitwise
    implementation -- simple and sufficient for our short frames.

    Args:
        data: Bytes-like object or iterable of ints (0-255).

    Returns:
        int: 16-bit CRC value.

    Example:
        >>> hex(crc16_modbus(b"123456789"))
        '0x4b37'
    """
    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
    return crc


# -- Encoding ----------------------------------------------------------------


def encode_frame(addr: int, cmd: int, payload) -> bytes:
    """Build a complete protocol frame.

    Constructs ADDR + CMD + PAYLOAD followed by the CRC of those
    bytes, high byte first.  The result is always ``len(payload) + 4``
    bytes long.

    Args:
        addr: Device address (int, 0-255).
        cmd: Command byte (int).
        payload: Payload bytes or list of ints.

    Returns:
        bytes: The complete encoded frame.

    Raises:
        ValueError: If addr is outside 0-255 or a payload value does
            not fit in a byte.
    """
    if not is_valid_address(addr):
        raise ValueError(
            "addr must be in range {}-{}, got {}".format(
                ADDR_MIN, ADDR_MAX, addr
            )
        )
    body = bytes([addr, cmd]) + bytes(payload)
    crc = crc16_modbus(body)
    return body + bytes([crc >> 8, crc & 0xFF])


def read_payload(position: int) -> bytes:
    """Payload for reading one holding register at *position*."""
    return bytes([0x00, position, 0x00, 0x01])


def write_payload(position: int, value: int) -> bytes:
    """Payload for writing *value* to the single register at *position*."""
    return bytes([0x00, position, 0x00, 0x01, 0x02, 0x00, value])


# -- Decoding ----------------------------------------------------------------


def strip_noise(data: bytes, starts=()) -> bytes:
    """Drop leading noise bytes (values <= NOISE_MAX).

    The link can deliver stray control bytes ahead of a real reply.
    Returns the suffix starting at the first byte above NOISE_MAX, or
    ``b""`` if every byte is noise.  Length and CRC are not checked.

    Low device addresses and command codes are themselves in the noise
    range, so *starts* may name ``(addr, cmd)`` pairs that are expected
    next on the wire; a position where one of them begins is kept.

    Args:
        data: Raw bytes received from the link.
        starts: Collection of ``(addr, cmd)`` tuples marking frame starts.

    Example:
        >>> strip_noise(bytes([0x01, 0x02]))
        b''
        >>> strip_noise(bytes([0x00, 0x01, 0x03, 0x02]), {(0x01, 0x03)}).hex(' ')
        '01 03 02'
    """
    for i, byte in enumerate(data):
        if byte > NOISE_MAX or tuple(data[i : i + 2]) in starts:
            return bytes(data[i:])
    return b""


def check_crc(frame: bytes) -> bool:
    """Return True if the trailing two bytes match the CRC of the rest."""
    if len(frame) < 4:
        return False
    crc = crc16_modbus(frame[:-2])
    return frame[-2] == crc >> 8 and frame[-1] == crc & 0xFF
