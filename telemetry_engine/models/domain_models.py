from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import uuid

from .enums import (
    AlarmSeverity,
    CollectionType,
    CommandStatus,
    CommandType,
    DataType,
    HealthStatus,
)

if TYPE_CHECKING:
    from ..conditions import AlarmCondition, ValidateCondition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def meta_id(datasource_id: str, device_id: str, signal_id: str) -> str:
    """Composite time-series key ``datasource:device:signal``.

    Backslashes and colons inside a component are escaped so that two
    different triples can never produce the same key.
    """
    return ":".join(_escape_component(part) for part in (datasource_id, device_id, signal_id))


def _escape_component(part: Any) -> str:
    return str(part).replace("\\", "\\\\").replace(":", "\\:")


###############################################################################
# 1. PROPERTIES & DRIVER SCHEMA -----------------------------------------------
###############################################################################

@dataclass(frozen=True, slots=True)
class Property:
    """Name/value pair used for datasource and signal configuration."""
    name: str
    value: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Property":
        value = row.get("value")
        return cls(
            name  = row["name"],
            value = None if value is None else str(value),
            id    = row.get("id"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "value": self.value}


def find_property(properties: List[Property], name: str, default: Optional[str] = None) -> Optional[str]:
    for prop in properties or []:
        if prop.name == name and prop.value is not None:
            return prop.value
    return default


@dataclass(slots=True)
class PropertyDefinition:
    """Declarative description of one configuration property a driver accepts."""
    name: str
    description: Optional[str] = None
    required: bool = False
    default_value: Optional[str] = None
    collection_type: CollectionType = CollectionType.SINGLE
    value_type: Optional[DataType] = None
    allowed_values: Dict[str, str] = field(default_factory=dict)
    validate_conditions: List["ValidateCondition"] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PropertyDefinition":
        from ..conditions import ConditionFactory
        return cls(
            name                = row["name"],
            description         = row.get("description"),
            required            = bool(row.get("required", False)),
            default_value       = row.get("defaultValue", row.get("default_value")),
            collection_type     = CollectionType(row.get("collectionType", "SINGLE")),
            value_type          = DataType.parse(row.get("valueType", row.get("value_type"))),
            allowed_values      = dict(row.get("allowedValues") or {}),
            validate_conditions = ConditionFactory.create_conditions(
                "validate", row.get("validateConditions") or []),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required": self.required,
            "defaultValue": self.default_value,
            "collectionType": self.collection_type.value,
            "valueType": self.value_type.name if self.value_type else None,
            "allowedValues": dict(self.allowed_values),
            "validateConditions": [c.to_row() for c in self.validate_conditions],
        }


@dataclass(slots=True)
class DriverDefinition:
    """Metadata a driver publishes about itself and its property schema."""
    id: str
    name: str
    description: Optional[str] = None
    version: Optional[str] = None
    connection_properties: List[PropertyDefinition] = field(default_factory=list)
    signal_properties: List[PropertyDefinition] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "connectionProperties": [p.to_row() for p in self.connection_properties],
            "signalProperties": [p.to_row() for p in self.signal_properties],
            "tags": list(self.tags),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

###############################################################################
# 2. DATASOURCE ---------------------------------------------------------------
###############################################################################

@dataclass(slots=True)
class Datasource:
    """A configured connection endpoint reachable through one driver."""
    id: str
    name: str
    driver_id: str
    active: bool = True
    description: Optional[str] = None
    configuration: List[Property] = field(default_factory=list)
    last_connection: Optional[datetime] = None
    connected: bool = False
    connection_status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def get_property(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return find_property(self.configuration, name, default)

    # ---------- factory --------------------------------------------------- #
    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Datasource":
        return cls(
            id                = row["id"],
            name              = row.get("name") or row["id"],
            driver_id         = row.get("driverId") or row["driver_id"],
            active            = bool(row.get("active", True)),
            description       = row.get("description"),
            configuration     = [Property.from_row(p) for p in row.get("configuration") or []],
            last_connection   = _parse_dt(row.get("lastConnection")),
            connected         = bool(row.get("connected", False)),
            connection_status = row.get("connectionStatus"),
            created_at        = _parse_dt(row.get("createdAt")),
            updated_at        = _parse_dt(row.get("updatedAt")),
        )

###############################################################################
# 3. DEVICE DEFINITIONS & DEVICES ---------------------------------------------
###############################################################################

@dataclass(slots=True)
class SignalDefinition:
    """One signal in a device type's catalogue."""
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[DataType] = None
    unit: Optional[str] = None
    required: bool = False
    alarms_enabled: bool = False
    alarm_conditions: List["AlarmCondition"] = field(default_factory=list)
    validate_conditions: List["ValidateCondition"] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SignalDefinition":
        from ..conditions import ConditionFactory
        return cls(
            id                  = row["id"],
            name                = row.get("name"),
            description         = row.get("description"),
            type                = DataType.parse(row.get("type")),
            unit                = row.get("unit"),
            required            = bool(row.get("required", False)),
            alarms_enabled      = bool(row.get("alarmsEnabled", False)),
            alarm_conditions    = ConditionFactory.create_conditions(
                "alarm", row.get("alarmConditions") or []),
            validate_conditions = ConditionFactory.create_conditions(
                "validate", row.get("validateConditions") or []),
        )


@dataclass(slots=True)
class DeviceDefinition:
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    signals: List[SignalDefinition] = field(default_factory=list)

    def find_signal(self, signal_id: str) -> Optional[SignalDefinition]:
        return next((s for s in self.signals if s.id == signal_id), None)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeviceDefinition":
        return cls(
            id          = row["id"],
            name        = row.get("name"),
            description = row.get("description"),
            signals     = [SignalDefinition.from_row(s) for s in row.get("signals") or []],
        )


@dataclass(frozen=True, slots=True)
class SignalConfiguration:
    """Driver-specific wiring (address, topic, scale, …) of one signal on a device."""
    signal_id: str
    properties: List[Property] = field(default_factory=list)

    def get_property(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return find_property(self.properties, name, default)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SignalConfiguration":
        return cls(
            signal_id  = row.get("signalId") or row["signal_id"],
            properties = [Property.from_row(p) for p in row.get("properties") or []],
        )


@dataclass(slots=True)
class Device:
    id: str
    datasource_id: str
    device_definition_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    active: bool = True
    signal_configurations: List[SignalConfiguration] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Device":
        return cls(
            id                    = row["id"],
            datasource_id         = row.get("datasourceId") or row["datasource_id"],
            device_definition_id  = row.get("deviceDefinitionId", row.get("device_definition_id")),
            name                  = row.get("name"),
            description           = row.get("description"),
            location              = row.get("location"),
            active                = bool(row.get("active", True)),
            signal_configurations = [SignalConfiguration.from_row(c)
                                     for c in row.get("signalConfigurations") or []],
            created_at            = _parse_dt(row.get("createdAt")),
            updated_at            = _parse_dt(row.get("updatedAt")),
        )

###############################################################################
# 4. COMMANDS -----------------------------------------------------------------
###############################################################################

@dataclass(frozen=True, slots=True)
class WriteRequest:
    signal_id: str
    value: Any = None


@dataclass(frozen=True, slots=True)
class ReadRequest:
    signal_id: str


@dataclass(slots=True)
class DeviceCommand:
    """On-demand read/write against one device.

    ``signal_configurations`` and ``signal_definitions`` are resolved by the
    runtime right before dispatch and are never part of ``to_row()``.
    """
    datasource_id: str
    device_id: str
    command_type: CommandType = CommandType.READ
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    write: List[WriteRequest] = field(default_factory=list)
    read: List[ReadRequest] = field(default_factory=list)
    status: Optional[CommandStatus] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result_message: Optional[str] = None
    retry_count: int = 0
    signal_configurations: List[SignalConfiguration] = field(
        default_factory=list, repr=False, compare=False)
    signal_definitions: List[SignalDefinition] = field(
        default_factory=list, repr=False, compare=False)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeviceCommand":
        status = row.get("status")
        return cls(
            id             = row.get("id") or str(uuid.uuid4()),
            datasource_id  = row.get("datasourceId") or row["datasource_id"],
            device_id      = row.get("deviceId") or row["device_id"],
            command_type   = CommandType(row.get("commandType", "READ")),
            write          = [WriteRequest(w["signalId"], w.get("value")) for w in row.get("write") or []],
            read           = [ReadRequest(r["signalId"]) for r in row.get("read") or []],
            status         = CommandStatus(status) if status else None,
            created_at     = _parse_dt(row.get("createdAt")),
            created_by     = row.get("createdBy"),
            sent_at        = _parse_dt(row.get("sentAt")),
            completed_at   = _parse_dt(row.get("completedAt")),
            result_message = row.get("resultMessage"),
            retry_count    = int(row.get("retryCount") or 0),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "datasourceId": self.datasource_id,
            "deviceId": self.device_id,
            "commandType": self.command_type.value,
            "write": [{"signalId": w.signal_id, "value": w.value} for w in self.write],
            "read": [{"signalId": r.signal_id} for r in self.read],
            "status": self.status.value if self.status else None,
            "createdAt": _iso(self.created_at),
            "createdBy": self.created_by,
            "sentAt": _iso(self.sent_at),
            "completedAt": _iso(self.completed_at),
            "resultMessage": self.result_message,
            "retryCount": self.retry_count,
        }

###############################################################################
# 5. READINGS & DEVICE STATE --------------------------------------------------
###############################################################################

@dataclass(slots=True)
class Reading:
    """A single sampled value; meta id, numeric value and time buckets are derived."""
    datasource_id: str
    device_id: str
    signal_id: str
    value: Any = None
    timestamp: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    numeric_value: Optional[float] = None
    in_alarm: bool = False
    alarm_message: Optional[str] = None
    alarm_severity: Optional[AlarmSeverity] = None
    valid: bool = True
    meta_id: str = field(init=False)
    year: int = field(init=False, default=0)
    month: int = field(init=False, default=0)
    day: int = field(init=False, default=0)
    hour: int = field(init=False, default=0)

    def __post_init__(self):
        self.meta_id = meta_id(self.datasource_id, self.device_id, self.signal_id)
        self.set_timestamp(self.timestamp or utcnow())
        if self.numeric_value is None:
            self.numeric_value = to_numeric(self.value)

    def set_timestamp(self, timestamp: datetime) -> None:
        self.timestamp = timestamp
        self.year, self.month = timestamp.year, timestamp.month
        self.day, self.hour = timestamp.day, timestamp.hour

    def set_value(self, value: Any) -> None:
        self.value = value
        self.numeric_value = to_numeric(value)

    def to_row(self) -> Dict[str, Any]:
        value = self.value
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        return {
            "id": self.id,
            "datasourceId": self.datasource_id,
            "deviceId": self.device_id,
            "signalId": self.signal_id,
            "metaId": self.meta_id,
            "timestamp": _iso(self.timestamp),
            "value": value,
            "numericValue": self.numeric_value,
            "inAlarm": self.in_alarm,
            "alarmMessage": self.alarm_message,
            "alarmSeverity": self.alarm_severity.name if self.alarm_severity else None,
            "valid": self.valid,
            "year": self.year,
            "month": self.month,
            "day": self.day,
            "hour": self.hour,
        }


def to_numeric(value: Any) -> Optional[float]:
    """Best-effort numeric projection of a raw value."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


@dataclass(slots=True)
class SignalState:
    signal_id: str
    last_reading: Optional[Reading] = None


@dataclass(slots=True)
class DeviceState:
    """Latest connectivity, health and per-signal snapshot of one device."""
    device_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    connected: bool = True
    connection_status: Optional[str] = "Connected"
    health_status: HealthStatus = HealthStatus.HEALTHY
    signal_states: List[SignalState] = field(default_factory=list)
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    def upsert_signal_state(self, reading: Reading) -> SignalState:
        for signal_state in self.signal_states:
            if signal_state.signal_id == reading.signal_id:
                signal_state.last_reading = reading
                return signal_state
        signal_state = SignalState(signal_id=reading.signal_id, last_reading=reading)
        self.signal_states.append(signal_state)
        return signal_state

    def degrade_on_alarm(self) -> bool:
        """HEALTHY -> DEGRADED; health never improves here."""
        if self.health_status == HealthStatus.HEALTHY:
            self.health_status = HealthStatus.DEGRADED
            return True
        return False

    def get_signal_state(self, signal_id: str) -> Optional[SignalState]:
        return next((s for s in self.signal_states if s.signal_id == signal_id), None)

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "connected": self.connected,
            "connectionStatus": self.connection_status,
            "healthStatus": self.health_status.name,
            "signalStates": [
                {"signalId": s.signal_id,
                 "lastReading": s.last_reading.to_row() if s.last_reading else None}
                for s in self.signal_states
            ],
            "created": _iso(self.created),
            "updated": _iso(self.updated),
        }

###############################################################################
# 6. HELPER PARSERS -----------------------------------------------------------
###############################################################################

def _parse_dt(value: Any) -> Optional[datetime]:
    """Convert ISO-8601 strings (or datetimes) into aware `datetime` objects."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
