# telemetry_engine/core/__init__.py
"""Core infrastructure components for the telemetry acquisition engine."""

# Import order: most fundamental to most specific

from .exceptions import (
    TelemetryEngineError,
    ConfigurationError,
    DriverNotFound,
    DriverError,
    ExpressionError,
    CommandStateError,
)

from .patterns.state_machine import StateMachine, RuntimeState
from .patterns.observer import (
    ChangeType,
    DatasourceChangeEvent,
    EngineObserver,
    EngineEventBus,
)


__all__ = [
    "TelemetryEngineError",
    "ConfigurationError",
    "DriverNotFound",
    "DriverError",
    "ExpressionError",
    "CommandStateError",
    "StateMachine",
    "RuntimeState",
    "ChangeType",
    "DatasourceChangeEvent",
    "EngineObserver",
    "EngineEventBus",
]
