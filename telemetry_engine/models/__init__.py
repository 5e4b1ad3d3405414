"""Data models and domain objects."""

from .enums import (
    AlarmSeverity,
    CollectionType,
    CommandStatus,
    CommandType,
    DataType,
    HealthStatus,
)

from .domain_models import (
    Datasource,
    Device,
    DeviceCommand,
    DeviceDefinition,
    DeviceState,
    DriverDefinition,
    Property,
    PropertyDefinition,
    ReadRequest,
    Reading,
    SignalConfiguration,
    SignalDefinition,
    SignalState,
    WriteRequest,
    meta_id,
    to_numeric,
    utcnow,
)

__all__ = [
    # Enumerations
    'AlarmSeverity',
    'CollectionType',
    'CommandStatus',
    'CommandType',
    'DataType',
    'HealthStatus',

    # Domain models
    'Datasource',
    'Device',
    'DeviceCommand',
    'DeviceDefinition',
    'DeviceState',
    'DriverDefinition',
    'Property',
    'PropertyDefinition',
    'ReadRequest',
    'Reading',
    'SignalConfiguration',
    'SignalDefinition',
    'SignalState',
    'WriteRequest',

    # Helpers
    'meta_id',
    'to_numeric',
    'utcnow',
]
