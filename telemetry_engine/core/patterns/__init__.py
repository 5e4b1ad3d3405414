from .state_machine import StateMachine, RuntimeState
from .observer import (
    ChangeType,
    DatasourceChangeEvent,
    EngineObserver,
    EngineEventBus,
)

__all__ = [
    "StateMachine",
    "RuntimeState",
    "ChangeType",
    "DatasourceChangeEvent",
    "EngineObserver",
    "EngineEventBus",
]
