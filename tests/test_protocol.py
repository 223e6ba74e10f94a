"""Tests for doasctl.protocol."""

import pytest

from doasctl.protocol import (
    ADDR_MAX,
    ADDR_MIN,
    CMD_READ,
    CMD_WRITE,
    check_crc,
    crc16_modbus,
    encode_frame,
    is_valid_address,
    read_payload,
    strip_noise,
    write_payload,
)


# -- Address validation ------------------------------------------------------


class TestIsValidAddress:
    """Tests for is_valid_address."""

    def test_bounds_valid(self):
        """Both ends of the byte range are accepted."""
        assert is_valid_address(ADDR_MIN) is True
        assert is_valid_address(ADDR_MAX) is True

    def test_above_max_invalid(self):
        """Address 256 does not fit in a byte."""
        assert is_valid_address(256) is False

    def test_negative_invalid(self):
        """Negative address is rejected."""
        assert is_valid_address(-1) is False


# -- CRC known vectors -------------------------------------------------------


class TestCrc16Modbus:
    """CRC-16/MODBUS computation tests."""

    def test_check_value(self):
        """The catalogue check value for '123456789' is 0x4B37."""
        assert crc16_modbus(b"123456789") == 0x4B37

    def test_read_holding_register_request(self):
        """CRC of 01 03 00 00 00 01 is 0x0A84 (wire bytes 84 0A in MODBUS)."""
        assert crc16_modbus(bytes([0x01, 0x03, 0x00, 0x00, 0x00, 0x01])) == 0x0A84

    def test_empty_input(self):
        """CRC of empty data is the initial value 0xFFFF."""
        assert crc16_modbus(b"") == 0xFFFF

    def test_accepts_int_list(self):
        """A list of ints gives the same CRC as the equivalent bytes."""
        data = [0x01, 0x10, 0x00, 0x02]
        assert crc16_modbus(data) == crc16_modbus(bytes(data))


# -- encode_frame ------------------------------------------------------------


class TestEncodeFrame:
    """Tests for the frame encoder."""

    def test_known_read_frame(self):
        """Read of register 0 on unit 1 matches the textbook frame, CRC high first."""
        frame = encode_frame(1, CMD_READ, read_payload(0x00))
        assert frame == bytes([0x01, 0x03, 0x00, 0x00, 0x00, 0x01, 0x0A, 0x84])

    def test_length(self):
        """Frame length is payload length plus four."""
        payload = write_payload(0x02, 0x07)
        assert len(encode_frame(1, CMD_WRITE, payload)) == len(payload) + 4

    def test_trailer_is_crc_of_body(self):
        """The last two bytes are the CRC of everything before them."""
        frame = encode_frame(0x2A, CMD_WRITE, write_payload(0x03, 0x02))
        crc = crc16_modbus(frame[:-2])
        assert frame[-2] == crc >> 8
        assert frame[-1] == crc & 0xFF

    def test_header(self):
        """Address and command lead the frame."""
        frame = encode_frame(0x42, CMD_READ, read_payload(0x01))
        assert frame[0] == 0x42
        assert frame[1] == CMD_READ

    def test_addr_out_of_range(self):
        """An address above 255 raises ValueError."""
        with pytest.raises(ValueError, match="addr"):
            encode_frame(256, CMD_READ, b"")

    def test_payload_value_out_of_range(self):
        """A payload value that does not fit in a byte raises ValueError."""
        with pytest.raises(ValueError):
            encode_frame(1, CMD_WRITE, [0x00, 300])


class TestPayloads:
    """Tests for the request payload builders."""

    def test_read_payload(self):
        """Read payload names the register and a count of one."""
        assert read_payload(0x02) == bytes([0x00, 0x02, 0x00, 0x01])

    def test_write_payload(self):
        """Write payload adds byte count 2 and the 16-bit value."""
        assert write_payload(0x02, 0x07) == bytes(
            [0x00, 0x02, 0x00, 0x01, 0x02, 0x00, 0x07]
        )


# -- strip_noise -------------------------------------------------------------


class TestStripNoise:
    """Tests for leading-noise removal."""

    def test_strips_leading_noise(self):
        """Bytes up to 0x0F are dropped from the front."""
        assert strip_noise(bytes([0x00, 0x05, 0x10, 0x20])) == bytes([0x10, 0x20])

    def test_all_noise(self):
        """Nothing but noise yields empty bytes."""
        assert strip_noise(bytes([0x01, 0x02])) == b""

    def test_no_noise(self):
        """Clean data is returned unchanged."""
        assert strip_noise(bytes([0x20, 0x30])) == bytes([0x20, 0x30])

    def test_empty(self):
        """Empty input yields empty bytes."""
        assert strip_noise(b"") == b""

    def test_only_leading_bytes_dropped(self):
        """Low bytes after the first data byte are kept."""
        assert strip_noise(bytes([0x0F, 0x10, 0x00, 0x01])) == bytes([0x10, 0x00, 0x01])

    def test_expected_start_kept(self):
        """A low address followed by its expected command starts the frame."""
        reply = bytes([0x01, 0x03, 0x00, 0x00, 0x2A])
        assert strip_noise(b"\x00" + reply, {(0x01, 0x03)}) == reply

    def test_expected_start_needs_command(self):
        """A low address with the wrong command is still noise."""
        data = bytes([0x01, 0x06, 0x00, 0x2A])
        assert strip_noise(data, {(0x01, 0x03)}) == bytes([0x2A])


class TestCheckCrc:
    """Tests for check_crc."""

    def test_valid(self):
        """An encoded frame passes."""
        assert check_crc(encode_frame(3, CMD_READ, read_payload(1))) is True

    def test_corrupted(self):
        """Flipping a payload bit fails the check."""
        frame = bytearray(encode_frame(3, CMD_READ, read_payload(1)))
        frame[3] ^= 0x01
        assert check_crc(bytes(frame)) is False

    def test_too_short(self):
        """Frames shorter than address + command + CRC fail."""
        assert check_crc(b"\x01\x03\x00") is False
