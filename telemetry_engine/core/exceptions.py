"""
Centralised exception definitions for the telemetry acquisition engine.
All custom exceptions should inherit from TelemetryEngineError.
"""

class TelemetryEngineError(Exception):
    """Base class for every custom exception thrown by this project."""

class ConfigurationError(TelemetryEngineError):
    """Raised when datasource, device or driver wiring is invalid."""

class DriverNotFound(ConfigurationError):
    """Raised when no driver is registered under the requested id."""

    def __init__(self, driver_id: str):
        super().__init__(f"Driver not found: {driver_id}")
        self.driver_id = driver_id

class DriverError(TelemetryEngineError):
    """Generic failure inside a driver (OPC-UA, MQTT, simulation, …)."""

class ExpressionError(TelemetryEngineError):
    """Raised when an expression cannot be compiled or is not allowed."""

class CommandStateError(TelemetryEngineError):
    """Raised on an illegal device command status transition."""
