from enum import Enum, auto
from typing import Dict, List

class RuntimeState(Enum):
    STOPPED       = auto()
    STARTING      = auto()
    CONNECTED     = auto()
    DISCONNECTED  = auto()

class StateMachine:
    """Lifecycle of one datasource runtime.

    STOPPED -> STARTING -> CONNECTED <-> DISCONNECTED, any of them -> STOPPED.
    """

    def __init__(self, initial: RuntimeState = RuntimeState.STOPPED):
        self._state = initial
        self._trans: Dict[RuntimeState, List[RuntimeState]] = {
            RuntimeState.STOPPED:      [RuntimeState.STARTING],
            RuntimeState.STARTING:     [RuntimeState.CONNECTED, RuntimeState.STOPPED],
            RuntimeState.CONNECTED:    [RuntimeState.DISCONNECTED, RuntimeState.STOPPED],
            RuntimeState.DISCONNECTED: [RuntimeState.CONNECTED, RuntimeState.STOPPED],
        }

    @property
    def state(self) -> RuntimeState: return self._state

    @property
    def running(self) -> bool:
        return self._state in (RuntimeState.CONNECTED, RuntimeState.DISCONNECTED)

    @property
    def connected(self) -> bool: return self._state == RuntimeState.CONNECTED

    def can(self, nxt: RuntimeState) -> bool: return nxt in self._trans[self._state]

    def transition(self, nxt: RuntimeState) -> bool:
        if self.can(nxt):
            self._state = nxt
            return True
        return False

    def force_stop(self) -> None:
        self._state = RuntimeState.STOPPED
