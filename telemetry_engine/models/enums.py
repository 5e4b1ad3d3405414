"""Enumerations shared by the engine models, conditions and drivers."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import total_ordering
from typing import Any


class DataType(Enum):
    """Value types a signal or a driver property can carry."""
    NUMERIC = "Numeric"
    DOUBLE = "Double"
    FLOAT = "Float"
    INTEGER = "Integer"
    LONG = "Long"
    DECIMAL = "Decimal"
    BOOLEAN = "Boolean"
    STRING = "String"
    DATE = "Date"
    DATETIME = "DateTime"
    TIMESTAMP = "Timestamp"
    BINARY = "Binary"

    @classmethod
    def parse(cls, raw: Any) -> "DataType | None":
        """Accept a member, its name or its label (case-insensitive)."""
        if raw is None or raw == "":
            return None
        if isinstance(raw, cls):
            return raw
        text = str(raw).strip()
        for member in cls:
            if text.upper() == member.name or text.lower() == member.value.lower():
                return member
        raise ValueError(f"Unknown data type: {raw!r}")

    def is_valid_value(self, value: Any) -> bool:
        """Type-level check of a raw value; ``None`` is valid for every type."""
        if value is None:
            return True

        if self in (DataType.NUMERIC, DataType.DOUBLE, DataType.FLOAT):
            if isinstance(value, bool):
                return False
            if isinstance(value, (int, float, Decimal)):
                return True
            return isinstance(value, str) and _parses(float, value)
        if self in (DataType.INTEGER, DataType.LONG):
            if isinstance(value, bool):
                return False
            if isinstance(value, int):
                return True
            return isinstance(value, str) and _parses(int, value)
        if self == DataType.DECIMAL:
            if isinstance(value, bool):
                return False
            if isinstance(value, (int, float, Decimal)):
                return True
            return isinstance(value, str) and _parses(Decimal, value)
        if self == DataType.BOOLEAN:
            if isinstance(value, bool):
                return True
            return isinstance(value, str) and value.strip().lower() in ("true", "false")
        if self == DataType.DATE:
            if isinstance(value, date):
                return True
            return isinstance(value, str) and _parses(date.fromisoformat, value)
        if self in (DataType.DATETIME, DataType.TIMESTAMP):
            if isinstance(value, datetime):
                return True
            return isinstance(value, str) and _parses(_parse_iso_datetime, value)
        if self == DataType.BINARY:
            return isinstance(value, (bytes, bytearray, memoryview))
        # STRING accepts anything
        return True


def _parse_iso_datetime(text: str) -> datetime:
    # fromisoformat only learned the trailing "Z" in 3.11
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _parses(parser, text: str) -> bool:
    try:
        parser(text.strip())
        return True
    except (ValueError, TypeError, ArithmeticError, InvalidOperation):
        return False


@total_ordering
class AlarmSeverity(Enum):
    INFO = (0, "Information")
    WARNING = (1, "Warning")
    MINOR = (2, "Minor")
    MAJOR = (3, "Major")
    CRITICAL = (4, "Critical")

    @property
    def level(self) -> int:
        return self.value[0]

    @property
    def description(self) -> str:
        return self.value[1]

    def __lt__(self, other):
        if not isinstance(other, AlarmSeverity):
            return NotImplemented
        return self.level < other.level

    @classmethod
    def parse(cls, raw: Any) -> "AlarmSeverity | None":
        if raw is None or raw == "":
            return None
        if isinstance(raw, cls):
            return raw
        return cls[str(raw).strip().upper()]


class HealthStatus(Enum):
    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    CRITICAL = "Critical"
    MAINTENANCE = "Maintenance"


class CommandType(Enum):
    READ = "READ"
    WRITE = "WRITE"


class CommandStatus(Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in (CommandStatus.COMPLETED, CommandStatus.FAILED, CommandStatus.CANCELLED)

    def can_transition_to(self, nxt: "CommandStatus") -> bool:
        """Forward-only lifecycle; terminal states accept nothing but themselves."""
        if nxt == self:
            return True
        if self.terminal:
            return False
        if nxt in (CommandStatus.FAILED, CommandStatus.CANCELLED):
            return True
        return _COMMAND_ORDER.index(nxt) > _COMMAND_ORDER.index(self)


_COMMAND_ORDER = [
    CommandStatus.PENDING,
    CommandStatus.SENT,
    CommandStatus.ACKNOWLEDGED,
    CommandStatus.COMPLETED,
]


class CollectionType(Enum):
    SINGLE = "SINGLE"
    LIST = "LIST"
