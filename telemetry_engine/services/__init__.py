from .repositories import (
    CommandStore,
    DatasourceStore,
    DeviceStateStore,
    DeviceStore,
    DriverDefinitionStore,
    ReadingStore,
)
from .memory_store import (
    MemoryCommandStore,
    MemoryDatasourceStore,
    MemoryDeviceStateStore,
    MemoryDeviceStore,
    MemoryDriverDefinitionStore,
    MemoryReadingStore,
    MemoryStores,
    load_seed,
)
from .command_service import DeviceCommandService

__all__ = [
    "CommandStore",
    "DatasourceStore",
    "DeviceStateStore",
    "DeviceStore",
    "DriverDefinitionStore",
    "ReadingStore",
    "MemoryCommandStore",
    "MemoryDatasourceStore",
    "MemoryDeviceStateStore",
    "MemoryDeviceStore",
    "MemoryDriverDefinitionStore",
    "MemoryReadingStore",
    "MemoryStores",
    "load_seed",
    "DeviceCommandService",
]
