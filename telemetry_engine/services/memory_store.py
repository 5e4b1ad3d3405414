# memory_store.py - in-process implementations of the data-access contracts

import copy
import dataclasses
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

from ..models import (
    Datasource,
    Device,
    DeviceCommand,
    DeviceDefinition,
    DeviceState,
    DriverDefinition,
    HealthStatus,
    Reading,
    utcnow,
)
from .repositories import (
    CommandStore,
    DatasourceStore,
    DeviceStateStore,
    DeviceStore,
    DriverDefinitionStore,
    ReadingStore,
)

logger = logging.getLogger(__name__)

# Seed document sections and the model each row is parsed into
SEED_SECTIONS: Dict[str, dict] = {
    "datasources": {"model": Datasource},
    "deviceDefinitions": {"model": DeviceDefinition},
    "devices": {"model": Device},
}


class MemoryDatasourceStore(DatasourceStore):
    def __init__(self):
        self._rows: Dict[str, Datasource] = {}
        self._lock = threading.RLock()

    def create(self, datasource: Datasource) -> Datasource:
        with self._lock:
            now = utcnow()
            datasource.created_at = datasource.created_at or now
            datasource.updated_at = now
            self._rows[datasource.id] = datasource
            return datasource

    def delete(self, datasource_id: str) -> bool:
        with self._lock:
            return self._rows.pop(datasource_id, None) is not None

    def list_all(self) -> List[Datasource]:
        with self._lock:
            return list(self._rows.values())

    def list_active(self) -> List[Datasource]:
        with self._lock:
            return [d for d in self._rows.values() if d.active]

    def get_by_id(self, datasource_id: str) -> Optional[Datasource]:
        with self._lock:
            return self._rows.get(datasource_id)

    def update(self, datasource_id: str, **changes) -> Optional[Datasource]:
        with self._lock:
            existing = self._rows.get(datasource_id)
            if existing is None:
                return None
            changes.setdefault("updated_at", utcnow())
            updated = dataclasses.replace(existing, **changes)
            self._rows[datasource_id] = updated
            return updated


class MemoryDeviceStore(DeviceStore):
    def __init__(self):
        self._devices: Dict[str, Device] = {}
        self._definitions: Dict[str, DeviceDefinition] = {}
        self._lock = threading.RLock()

    def create(self, device: Device) -> Device:
        with self._lock:
            self._devices[device.id] = device
            return device

    def delete(self, device_id: str) -> bool:
        with self._lock:
            return self._devices.pop(device_id, None) is not None

    def create_definition(self, definition: DeviceDefinition) -> DeviceDefinition:
        with self._lock:
            self._definitions[definition.id] = definition
            return definition

    def list_by_datasource(self, datasource_id: str) -> List[Device]:
        with self._lock:
            return [d for d in self._devices.values() if d.datasource_id == datasource_id]

    def get_by_id(self, device_id: str) -> Optional[Device]:
        with self._lock:
            return self._devices.get(device_id)

    def get_device_definition(self, definition_id: str) -> Optional[DeviceDefinition]:
        with self._lock:
            return self._definitions.get(definition_id)


class MemoryReadingStore(ReadingStore):
    def __init__(self):
        self._rows: List[Reading] = []
        self._lock = threading.Lock()

    def create(self, reading: Reading) -> Reading:
        with self._lock:
            self._rows.append(reading)
            return reading

    def list_all(self) -> List[Reading]:
        with self._lock:
            return list(self._rows)

    def list_by_meta_id(self, meta_id: str, start: Optional[datetime] = None,
                        end: Optional[datetime] = None) -> List[Reading]:
        with self._lock:
            return [
                r for r in self._rows
                if r.meta_id == meta_id
                and (start is None or r.timestamp >= start)
                and (end is None or r.timestamp <= end)
            ]

    def list_by_device(self, device_id: str) -> List[Reading]:
        with self._lock:
            return [r for r in self._rows if r.device_id == device_id]


class MemoryDeviceStateStore(DeviceStateStore):
    """Keeps private copies so callers only ever see what was persisted."""

    def __init__(self):
        self._rows: Dict[str, DeviceState] = {}
        self._lock = threading.Lock()

    def get_by_device_id(self, device_id: str) -> Optional[DeviceState]:
        with self._lock:
            state = self._rows.get(device_id)
            return copy.deepcopy(state) if state else None

    def create(self, state: DeviceState) -> DeviceState:
        with self._lock:
            now = utcnow()
            state.created = state.created or now
            state.updated = now
            self._rows[state.device_id] = copy.deepcopy(state)
            return state

    def update(self, state_id: str, state: DeviceState) -> DeviceState:
        with self._lock:
            if state.id != state_id:
                raise KeyError(f"Device state id mismatch: {state_id} != {state.id}")
            state.updated = utcnow()
            self._rows[state.device_id] = copy.deepcopy(state)
            return state

    def list_by_health(self, health_status: HealthStatus) -> List[DeviceState]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._rows.values() if s.health_status == health_status]


class MemoryDriverDefinitionStore(DriverDefinitionStore):
    def __init__(self):
        self._rows: Dict[str, DriverDefinition] = {}
        self._lock = threading.Lock()

    def list_all(self) -> List[DriverDefinition]:
        with self._lock:
            return list(self._rows.values())

    def get_by_id(self, driver_id: str) -> Optional[DriverDefinition]:
        with self._lock:
            return self._rows.get(driver_id)

    def create(self, definition: DriverDefinition) -> DriverDefinition:
        with self._lock:
            self._rows[definition.id] = definition
            return definition

    def update(self, driver_id: str, definition: DriverDefinition) -> DriverDefinition:
        with self._lock:
            self._rows[driver_id] = definition
            return definition


class MemoryCommandStore(CommandStore):
    def __init__(self):
        self._rows: Dict[str, DeviceCommand] = {}
        self._lock = threading.Lock()

    def list_all(self) -> List[DeviceCommand]:
        with self._lock:
            return list(self._rows.values())

    def get_by_id(self, command_id: str) -> Optional[DeviceCommand]:
        with self._lock:
            return self._rows.get(command_id)

    def create(self, command: DeviceCommand) -> DeviceCommand:
        with self._lock:
            self._rows[command.id] = command
            return command

    def update(self, command_id: str, command: DeviceCommand) -> DeviceCommand:
        with self._lock:
            self._rows[command_id] = command
            return command


@dataclass
class MemoryStores:
    """One instance of every in-memory collaborator."""
    datasources: MemoryDatasourceStore = field(default_factory=MemoryDatasourceStore)
    devices: MemoryDeviceStore = field(default_factory=MemoryDeviceStore)
    readings: MemoryReadingStore = field(default_factory=MemoryReadingStore)
    device_states: MemoryDeviceStateStore = field(default_factory=MemoryDeviceStateStore)
    driver_definitions: MemoryDriverDefinitionStore = field(default_factory=MemoryDriverDefinitionStore)
    commands: MemoryCommandStore = field(default_factory=MemoryCommandStore)


def load_seed(source: Union[str, Path, Dict[str, Any]], stores: Optional[MemoryStores] = None) -> MemoryStores:
    """Fill the stores from a JSON seed document (path or already-parsed dict)."""
    stores = stores or MemoryStores()
    if isinstance(source, (str, Path)):
        with open(source, encoding="utf-8") as fh:
            document = json.load(fh)
    else:
        document = source

    parsed = {
        section: [config["model"].from_row(row) for row in document.get(section) or []]
        for section, config in SEED_SECTIONS.items()
    }

    for definition in parsed["deviceDefinitions"]:
        stores.devices.create_definition(definition)
    for device in parsed["devices"]:
        stores.devices.create(device)
    for datasource in parsed["datasources"]:
        stores.datasources.create(datasource)

    logger.info(
        f"Seeded {len(parsed['datasources'])} datasources, "
        f"{len(parsed['deviceDefinitions'])} device definitions, "
        f"{len(parsed['devices'])} devices"
    )
    return stores
