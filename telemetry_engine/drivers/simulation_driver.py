"""
Simulation driver.

Produces values without touching any network, either random within the
configured range of each signal or a fixed value. Writes are remembered per
signal and returned by subsequent reads, which makes it handy for exercising
the command path end to end.
"""

import asyncio
import random
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import DriverError
from ..models import (
    DataType,
    DeviceCommand,
    PropertyDefinition,
    Reading,
    SignalConfiguration,
    SignalDefinition,
)
from .base_driver import Driver
from .driver_registry import register_driver

MIN_DELAY_KEY = "minConnectionDelay"
MAX_DELAY_KEY = "maxConnectionDelay"

# Named presets accepted as staticValue
STATIC_PRESETS = {
    "LOW": 0,
    "MEDIUM": 50,
    "HIGH": 100,
    "ON": 1,
    "OFF": 0,
    "ERROR": -1,
}


@register_driver
class SimulationDriver(Driver):
    """test-driver-v1: random or static values, in-memory writes."""

    DRIVER_ID = "test-driver-v1"
    NAME = "Test Driver v1"
    DESCRIPTION = "Simulation driver for testing purposes"
    VERSION = "1.0.0"
    TAGS = ("test", "simulation")

    def __init__(self, rng: Optional[random.Random] = None):
        super().__init__()
        self._connected = False
        self._random = rng or random.Random()
        # (device_id, signal_id) -> last value written
        self.last_written_values: Dict[Tuple[str, str], Any] = {}

    @classmethod
    def connection_properties(cls) -> List[PropertyDefinition]:
        return [
            PropertyDefinition(
                name=MIN_DELAY_KEY,
                description="Minimum delay in milliseconds when simulating connection",
                value_type=DataType.INTEGER,
                default_value="100",
            ),
            PropertyDefinition(
                name=MAX_DELAY_KEY,
                description="Maximum delay in milliseconds when simulating connection",
                value_type=DataType.INTEGER,
                default_value="1000",
            ),
        ]

    @classmethod
    def signal_properties(cls) -> List[PropertyDefinition]:
        return [
            PropertyDefinition(
                name="minValue",
                description="Minimum value for random signal generation",
                value_type=DataType.FLOAT,
                default_value="0",
            ),
            PropertyDefinition(
                name="maxValue",
                description="Maximum value for random signal generation",
                value_type=DataType.FLOAT,
                default_value="100",
            ),
            PropertyDefinition(
                name="valueType",
                description="Type of value to generate (RANDOM or STATIC)",
                value_type=DataType.STRING,
                default_value="RANDOM",
                allowed_values={
                    "RANDOM": "Random value within range",
                    "STATIC": "Static predefined value",
                },
            ),
            PropertyDefinition(
                name="staticValue",
                description="Value returned when valueType is STATIC",
                value_type=DataType.STRING,
            ),
        ]

    # ---------- lifecycle ------------------------------------------------- #
    async def connect(self) -> bool:
        if self._connected:
            return True

        min_delay = self.get_int_property(MIN_DELAY_KEY, 100)
        max_delay = max(min_delay, self.get_int_property(MAX_DELAY_KEY, 1000))
        delay_ms = self._random.randint(min_delay, max_delay) if max_delay > 0 else 0

        self.logger.info(f"Connecting with simulated delay {delay_ms} ms")
        await asyncio.sleep(delay_ms / 1000)
        self._connected = True
        self.logger.info(f"Connected to datasource {self.datasource.id if self.datasource else '?'}")
        return True

    async def disconnect(self) -> None:
        self._connected = False
        self.logger.info("Disconnected")

    def is_connected(self) -> bool:
        return self._connected

    # ---------- I/O ------------------------------------------------------- #
    async def read(self, commands: List[DeviceCommand]) -> List[Reading]:
        if not self._connected:
            raise DriverError("Driver is not connected")

        readings = []
        for command in commands:
            for signal_id, definition, configuration in self.requested_signals(command):
                value = self._next_value(command.device_id, signal_id, definition, configuration)
                readings.append(self.make_reading(command, signal_id, value))

        self.logger.debug(f"Read {len(readings)} readings from {len(commands)} commands")
        return readings

    async def write(self, commands: List[DeviceCommand]) -> None:
        if not self._connected:
            raise DriverError("Driver is not connected")

        for command in commands:
            for request in command.write:
                self.last_written_values[(command.device_id, request.signal_id)] = request.value
                self.logger.info(f"Wrote {request.value!r} to {command.device_id}/{request.signal_id}")

    # ---------- value generation ------------------------------------------ #
    def _next_value(self, device_id: str, signal_id: str, definition: Optional[SignalDefinition],
                    configuration: Optional[SignalConfiguration]) -> Any:
        key = (device_id, signal_id)
        if key in self.last_written_values:
            return self.last_written_values[key]

        data_type = definition.type if definition else None
        config = configuration or SignalConfiguration(signal_id=signal_id)

        if (config.get_property("valueType", "RANDOM") or "RANDOM").upper() == "STATIC":
            return self._static_value(config.get_property("staticValue"), data_type)

        low = _as_float(config.get_property("minValue"), 0.0)
        high = _as_float(config.get_property("maxValue"), 100.0)
        if high < low:
            low, high = high, low
        return self._random_value(data_type, low, high)

    def _random_value(self, data_type: Optional[DataType], low: float, high: float) -> Any:
        if data_type is None or data_type in (DataType.INTEGER, DataType.LONG):
            return self._random.randint(int(low), int(high))
        if data_type == DataType.BOOLEAN:
            return self._random.random() < 0.5
        if data_type in (DataType.FLOAT, DataType.DOUBLE, DataType.NUMERIC, DataType.DECIMAL):
            return self._random.uniform(low, high)
        if data_type == DataType.STRING:
            return f"Value-{uuid.uuid4().hex[:8]}"
        if data_type == DataType.DATE:
            return date.today()
        if data_type in (DataType.DATETIME, DataType.TIMESTAMP):
            return datetime.now(timezone.utc)
        if data_type == DataType.BINARY:
            return bytes(self._random.getrandbits(8) for _ in range(8))
        return self._random.randint(int(low), int(high))

    @staticmethod
    def _static_value(raw: Optional[str], data_type: Optional[DataType]) -> Any:
        if raw is None:
            return None
        if data_type == DataType.BOOLEAN:
            return raw.strip().lower() in ("true", "1", "on")
        preset = STATIC_PRESETS.get(raw.strip().upper())
        if preset is not None and data_type != DataType.STRING:
            return preset
        try:
            if data_type in (DataType.INTEGER, DataType.LONG):
                return int(float(raw))
            if data_type in (DataType.FLOAT, DataType.DOUBLE, DataType.NUMERIC, DataType.DECIMAL):
                return float(raw)
        except ValueError:
            pass
        return raw


def _as_float(raw: Optional[str], default: float) -> float:
    try:
        return float(raw) if raw not in (None, "") else default
    except ValueError:
        return default
