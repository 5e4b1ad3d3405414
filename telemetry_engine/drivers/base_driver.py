"""
Driver capability contract.

A driver adapts one field protocol (or a simulator) to the engine. Each
instance is bound to exactly one Runtime for its whole life and is never
called concurrently; the Runtime serializes every call.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterator, List, Optional, Tuple
import logging

from ..models import (
    CommandType,
    Datasource,
    DeviceCommand,
    DriverDefinition,
    PropertyDefinition,
    Reading,
    SignalConfiguration,
    SignalDefinition,
)


class Driver(ABC):
    """Base class every protocol driver derives from."""

    DRIVER_ID: str = ""
    NAME: str = ""
    DESCRIPTION: str = ""
    VERSION: str = "1.0.0"
    TAGS: Tuple[str, ...] = ()

    def __init__(self):
        self.datasource: Optional[Datasource] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def id(self) -> str:
        return self.DRIVER_ID

    # ---------- metadata -------------------------------------------------- #
    @classmethod
    def definition(cls) -> DriverDefinition:
        return DriverDefinition(
            id                    = cls.DRIVER_ID,
            name                  = cls.NAME or cls.DRIVER_ID,
            description           = cls.DESCRIPTION,
            version               = cls.VERSION,
            connection_properties = cls.connection_properties(),
            signal_properties     = cls.signal_properties(),
            tags                  = list(cls.TAGS),
        )

    @classmethod
    def connection_properties(cls) -> List[PropertyDefinition]:
        return []

    @classmethod
    def signal_properties(cls) -> List[PropertyDefinition]:
        return []

    # ---------- lifecycle ------------------------------------------------- #
    def initialize(self, datasource: Datasource) -> None:
        self.datasource = datasource
        self.logger.info(f"{self.DRIVER_ID} initialized for datasource {datasource.id}")

    @abstractmethod
    async def connect(self) -> bool:
        """Open the connection; return False instead of raising on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    # ---------- I/O ------------------------------------------------------- #
    async def execute(self, commands: List[DeviceCommand]) -> List[Reading]:
        """Combined entrypoint: WRITE commands go to `write`, the rest are read."""
        writes = [c for c in commands if c.command_type == CommandType.WRITE]
        reads = [c for c in commands if c.command_type != CommandType.WRITE]
        if writes:
            await self.write(writes)
        if not reads:
            return []
        return await self.read(reads)

    @abstractmethod
    async def read(self, commands: List[DeviceCommand]) -> List[Reading]:
        pass

    @abstractmethod
    async def write(self, commands: List[DeviceCommand]) -> None:
        pass

    # ---------- helpers --------------------------------------------------- #
    def get_property(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Datasource configuration value, falling back to the declared default."""
        if self.datasource is not None:
            value = self.datasource.get_property(name)
            if value is not None:
                return value
        if default is not None:
            return default
        for prop in self.connection_properties():
            if prop.name == name:
                return prop.default_value
        return None

    def get_int_property(self, name: str, default: int) -> int:
        raw = self.get_property(name)
        try:
            return int(float(raw)) if raw not in (None, "") else default
        except ValueError:
            self.logger.warning(f"Property {name}={raw!r} is not a number, using {default}")
            return default

    @staticmethod
    def find_signal_definition(command: DeviceCommand, signal_id: str) -> Optional[SignalDefinition]:
        return next((d for d in command.signal_definitions if d.id == signal_id), None)

    @staticmethod
    def find_signal_configuration(command: DeviceCommand, signal_id: str) -> Optional[SignalConfiguration]:
        return next((c for c in command.signal_configurations if c.signal_id == signal_id), None)

    def requested_signals(
        self, command: DeviceCommand
    ) -> Iterator[Tuple[str, Optional[SignalDefinition], Optional[SignalConfiguration]]]:
        """Signals a READ command asks for: its explicit read list, else every resolved signal."""
        if command.read:
            signal_ids = [r.signal_id for r in command.read]
        else:
            signal_ids = [d.id for d in command.signal_definitions]
        for signal_id in signal_ids:
            yield (signal_id,
                   self.find_signal_definition(command, signal_id),
                   self.find_signal_configuration(command, signal_id))

    def make_reading(self, command: DeviceCommand, signal_id: str, value: Any) -> Reading:
        datasource_id = command.datasource_id or (self.datasource.id if self.datasource else "")
        return Reading(
            datasource_id = datasource_id,
            device_id     = command.device_id,
            signal_id     = signal_id,
            value         = value,
        )
