"""Fan-level view of the DOAS ventilation unit.

Translates between the device's register codes and the values a
home-automation front end works with: power as a bool, rotation
direction as 0 (clockwise) or 1 (counter-clockwise) and speed as a
percentage.

Example:
    >>> speed_to_native(45)
    2
    >>> native_to_speed(2)
    50
"""

import logging

from doasctl.config import DEFAULT_TIMEOUT_S
from doasctl.registers import Result

log = logging.getLogger(__name__)

# -- Registers ---------------------------------------------------------------

REG_ON = 0x01
REG_DIRECTION = 0x02
REG_SPEED = 0x03

MANUFACTURER = "Panasonic"
MODEL = "FY-RS15ZDP2C"

# Native direction codes; 5 is reported by the unit but not settable here.
_DIRECTION_TO_NATIVE = {0: 0, 1: 2}
_NATIVE_TO_DIRECTION = {0: 0, 2: 1, 5: 0}

_NATIVE_TO_SPEED = {1: 5, 2: 50, 3: 100}


# -- Value mapping -----------------------------------------------------------


def on_to_native(on) -> int:
    return 0x01 if on else 0x00


def native_to_on(value: int) -> bool:
    return bool(value)


def direction_to_native(direction: int) -> int:
    """Map 0/1 to the unit's direction code; unknown values map to 0."""
    return _DIRECTION_TO_NATIVE.get(direction, 0)


def native_to_direction(value: int) -> int:
    """Map a direction code to 0/1; unknown codes map to 0."""
    return _NATIVE_TO_DIRECTION.get(value, 0)


def speed_to_native(percent) -> int:
    """Map a speed percentage onto the unit's three speed tiers."""
    if percent <= 30:
        return 1
    elif percent < 70:
        return 2
    return 3


def native_to_speed(value: int) -> int:
    """Map a speed tier to its nominal percentage; 0 if unknown."""
    return _NATIVE_TO_SPEED.get(value, 0)


# -- Fan ---------------------------------------------------------------------


class Fan:
    """Power, direction and speed of one ventilation unit.

    Every getter and setter returns a Result.  An abandoned result
    means the unit did not answer within *timeout* or the link
    dropped while waiting.

    Args:
        registers: A RegisterClient bound to the unit.
        timeout: Seconds to wait for each reply.
        name: Display name used in log messages.
    """

    def __init__(self, registers, timeout=DEFAULT_TIMEOUT_S, name="DOAS"):
        self._registers = registers
        self._timeout = timeout
        self.name = name

    def info(self) -> dict:
        return {"name": self.name, "manufacturer": MANUFACTURER, "model": MODEL}

    async def _get(self, what, register, convert) -> Result:
        log.info("Requesting get %s of %s...", what, self.name)
        result = (await self._registers.read(register, self._timeout)).map(convert)
        if result.resolved:
            log.info("Current %s of %s was returned: %s", what, self.name, result.value)
        else:
            log.warning("No %s returned by %s", what, self.name)
        return result

    async def _set(self, what, register, value, native) -> Result:
        log.info("Requesting set %s of %s...", what, self.name)
        result = await self._registers.write(register, native, self._timeout)
        if result.resolved:
            log.info("Current %s of %s was set: %s", what, self.name, value)
            return Result(result.status, value)
        log.warning("Setting %s of %s was not confirmed", what, self.name)
        return result

    async def get_on(self) -> Result:
        return await self._get("On", REG_ON, native_to_on)

    async def set_on(self, on) -> Result:
        return await self._set("On", REG_ON, bool(on), on_to_native(on))

    async def get_direction(self) -> Result:
        return await self._get("direction", REG_DIRECTION, native_to_direction)

    async def set_direction(self, direction: int) -> Result:
        return await self._set(
            "direction", REG_DIRECTION, direction, direction_to_native(direction)
        )

    async def get_speed(self) -> Result:
        return await self._get("speed", REG_SPEED, native_to_speed)

    async def set_speed(self, percent) -> Result:
        return await self._set("speed", REG_SPEED, percent, speed_to_native(percent))

    async def status(self) -> dict:
        """Read all three values in turn; abandoned ones are None."""
        on = await self.get_on()
        direction = await self.get_direction()
        speed = await self.get_speed()
        return {
            "on": on.value,
            "direction": direction.value,
            "speed": speed.value,
        }
