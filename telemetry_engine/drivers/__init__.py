"""Protocol drivers and the driver registry."""

from .base_driver import Driver
from .driver_registry import DriverRegistry, register_driver, registered_drivers

# Importing the implementations fills the registration table
from .simulation_driver import SimulationDriver
from .opcua_driver import OpcUaDriver
from .mqtt_driver import MqttDriver

__all__ = [
    # Base classes
    'Driver',

    # Registry
    'DriverRegistry',
    'register_driver',
    'registered_drivers',

    # Implementations
    'SimulationDriver',
    'OpcUaDriver',
    'MqttDriver',
]
