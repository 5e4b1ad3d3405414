"""Industrial telemetry acquisition engine - Main Package"""

__version__ = '1.0.0'
__description__ = 'Driver-based telemetry polling with alarm evaluation and device health tracking'

# Core patterns - most fundamental
from .core import StateMachine, RuntimeState, EngineEventBus, DatasourceChangeEvent, ChangeType

# Models - domain objects
from .models import Datasource, Device, DeviceDefinition, DeviceCommand, DeviceState, Reading

# Conditions
from .conditions import Expression, AlarmCondition, ValidateCondition, ConditionFactory

# Drivers
from .drivers import Driver, DriverRegistry, register_driver

# Services - data access
from .services import MemoryStores, DeviceCommandService, load_seed

# Engine
from .engine import Runtime, Engines

__all__ = [
    # Core
    'StateMachine',
    'RuntimeState',
    'EngineEventBus',
    'DatasourceChangeEvent',
    'ChangeType',

    # Models
    'Datasource',
    'Device',
    'DeviceDefinition',
    'DeviceCommand',
    'DeviceState',
    'Reading',

    # Conditions
    'Expression',
    'AlarmCondition',
    'ValidateCondition',
    'ConditionFactory',

    # Drivers
    'Driver',
    'DriverRegistry',
    'register_driver',

    # Services
    'MemoryStores',
    'DeviceCommandService',
    'load_seed',

    # Engine
    'Runtime',
    'Engines',
]
