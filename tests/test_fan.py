"""Tests for doasctl.fan."""

import asyncio

import pytest

from doasctl.fan import (
    MANUFACTURER,
    MODEL,
    REG_DIRECTION,
    REG_ON,
    REG_SPEED,
    Fan,
    direction_to_native,
    native_to_direction,
    native_to_on,
    native_to_speed,
    on_to_native,
    speed_to_native,
)
from doasctl.registers import ABANDONED, Result, Status


class FakeRegisters:
    """RegisterClient double backed by a dict; None means no answer."""

    def __init__(self, values):
        self.values = dict(values)
        self.writes = []

    async def read(self, position, timeout=None):
        value = self.values.get(position)
        if value is None:
            return ABANDONED
        return Result(Status.RESOLVED, value)

    async def write(self, position, value, timeout=None):
        if position not in self.values:
            return ABANDONED
        self.writes.append((position, value))
        self.values[position] = value
        return Result(Status.RESOLVED)


class TestMapping:
    """Value translation between the unit and the front end."""

    def test_on(self):
        """Power maps to 1/0 and back to bool."""
        assert on_to_native(True) == 0x01
        assert on_to_native(False) == 0x00
        assert native_to_on(0x01) is True
        assert native_to_on(0x00) is False

    @pytest.mark.parametrize("native, direction", [(0, 0), (2, 1), (5, 0), (7, 0)])
    def test_native_to_direction(self, native, direction):
        """Codes 0 and 5 are direction 0, 2 is direction 1, others 0."""
        assert native_to_direction(native) == direction

    def test_direction_to_native(self):
        """Direction 1 is sent as code 2; anything else as 0."""
        assert direction_to_native(0) == 0
        assert direction_to_native(1) == 2
        assert direction_to_native(9) == 0

    @pytest.mark.parametrize(
        "percent, tier", [(0, 1), (30, 1), (31, 2), (69, 2), (70, 3), (100, 3)]
    )
    def test_speed_to_native(self, percent, tier):
        """Percentages fall into three tiers at 30 and 70."""
        assert speed_to_native(percent) == tier

    @pytest.mark.parametrize("tier, percent", [(1, 5), (2, 50), (3, 100), (0, 0), (4, 0)])
    def test_native_to_speed(self, tier, percent):
        """Tiers map to fixed percentages; unknown tiers to 0."""
        assert native_to_speed(tier) == percent


class TestFan:
    """Tests for the Fan facade."""

    def test_info(self):
        """info() names the unit's make and model."""
        info = Fan(FakeRegisters({})).info()
        assert info["manufacturer"] == MANUFACTURER == "Panasonic"
        assert info["model"] == MODEL == "FY-RS15ZDP2C"

    def test_getters_translate(self):
        """Getters read the right registers and translate the codes."""
        fan = Fan(FakeRegisters({REG_ON: 1, REG_DIRECTION: 2, REG_SPEED: 3}))

        async def scenario():
            return (
                await fan.get_on(),
                await fan.get_direction(),
                await fan.get_speed(),
            )

        on, direction, speed = asyncio.run(scenario())
        assert on == Result(Status.RESOLVED, True)
        assert direction == Result(Status.RESOLVED, 1)
        assert speed == Result(Status.RESOLVED, 100)

    def test_setters_write_native_codes(self):
        """Setters write the unit's codes and echo the requested value."""
        registers = FakeRegisters({REG_ON: 0, REG_DIRECTION: 0, REG_SPEED: 1})
        fan = Fan(registers)

        async def scenario():
            return (
                await fan.set_on(True),
                await fan.set_direction(1),
                await fan.set_speed(45),
            )

        on, direction, speed = asyncio.run(scenario())
        assert registers.writes == [(REG_ON, 1), (REG_DIRECTION, 2), (REG_SPEED, 2)]
        assert on.value is True
        assert direction.value == 1
        assert speed.value == 45

    def test_unanswered_is_abandoned(self):
        """A register that never answers yields ABANDONED."""
        fan = Fan(FakeRegisters({}))
        assert asyncio.run(fan.get_speed()) is ABANDONED
        assert asyncio.run(fan.set_speed(50)) is ABANDONED

    def test_status(self):
        """status() collects all values; missing ones are None."""
        fan = Fan(FakeRegisters({REG_ON: 1, REG_SPEED: 2}))
        assert asyncio.run(fan.status()) == {
            "on": True,
            "direction": None,
            "speed": 50,
        }
