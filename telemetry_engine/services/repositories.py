"""
Data-access contracts the engine calls into.

Every collaborator is a synchronous plain-method service; the engine never
assumes anything about how records are actually stored.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..models import (
    Datasource,
    Device,
    DeviceCommand,
    DeviceDefinition,
    DeviceState,
    DriverDefinition,
    HealthStatus,
    Reading,
)


class DatasourceStore(ABC):

    @abstractmethod
    def list_active(self) -> List[Datasource]:
        pass

    @abstractmethod
    def get_by_id(self, datasource_id: str) -> Optional[Datasource]:
        pass

    @abstractmethod
    def update(self, datasource_id: str, **changes) -> Optional[Datasource]:
        """Apply field changes; returns the updated record or None if unknown."""


class DeviceStore(ABC):

    @abstractmethod
    def list_by_datasource(self, datasource_id: str) -> List[Device]:
        pass

    @abstractmethod
    def get_by_id(self, device_id: str) -> Optional[Device]:
        pass

    @abstractmethod
    def get_device_definition(self, definition_id: str) -> Optional[DeviceDefinition]:
        pass


class ReadingStore(ABC):

    @abstractmethod
    def create(self, reading: Reading) -> Reading:
        pass

    @abstractmethod
    def list_by_meta_id(self, meta_id: str, start: Optional[datetime] = None,
                        end: Optional[datetime] = None) -> List[Reading]:
        pass

    @abstractmethod
    def list_by_device(self, device_id: str) -> List[Reading]:
        pass


class DeviceStateStore(ABC):

    @abstractmethod
    def get_by_device_id(self, device_id: str) -> Optional[DeviceState]:
        pass

    @abstractmethod
    def create(self, state: DeviceState) -> DeviceState:
        pass

    @abstractmethod
    def update(self, state_id: str, state: DeviceState) -> DeviceState:
        pass

    @abstractmethod
    def list_by_health(self, health_status: HealthStatus) -> List[DeviceState]:
        pass


class DriverDefinitionStore(ABC):

    @abstractmethod
    def get_by_id(self, driver_id: str) -> Optional[DriverDefinition]:
        pass

    @abstractmethod
    def create(self, definition: DriverDefinition) -> DriverDefinition:
        pass

    @abstractmethod
    def update(self, driver_id: str, definition: DriverDefinition) -> DriverDefinition:
        pass


class CommandStore(ABC):

    @abstractmethod
    def list_all(self) -> List[DeviceCommand]:
        pass

    @abstractmethod
    def get_by_id(self, command_id: str) -> Optional[DeviceCommand]:
        pass

    @abstractmethod
    def create(self, command: DeviceCommand) -> DeviceCommand:
        pass

    @abstractmethod
    def update(self, command_id: str, command: DeviceCommand) -> DeviceCommand:
        pass
