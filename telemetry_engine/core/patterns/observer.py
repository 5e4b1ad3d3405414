"""
Datasource change notifications.

Whoever edits datasources or devices publishes a DatasourceChangeEvent on
the EngineEventBus; the bus hands events, one at a time and in publish
order, to every observer that declared interest in that change type.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ChangeType(Enum):
    DATASOURCE_ADDED = "datasource_added"
    DATASOURCE_MODIFIED = "datasource_modified"
    DATASOURCE_REMOVED = "datasource_removed"
    DEVICES_MODIFIED = "devices_modified"


@dataclass
class DatasourceChangeEvent:
    change_type: ChangeType
    datasource_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Optional[Dict[str, Any]] = None


class EngineObserver(ABC):
    """Receiver of datasource change events."""

    @abstractmethod
    async def notify(self, event: DatasourceChangeEvent) -> None:
        """React to one change event."""

    @abstractmethod
    def get_observer_id(self) -> str:
        """Stable id; one subscription per id."""

    @abstractmethod
    def get_interested_changes(self) -> List[ChangeType]:
        """Change types this observer wants to receive."""


class EngineEventBus:
    """Queue-backed bus delivering change events to observers in publish order."""

    def __init__(self, max_queue_size: int = 1000):
        self._observers: Dict[str, EngineObserver] = {}
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._dispatcher: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ---------- subscriptions --------------------------------------------- #
    async def subscribe(self, observer: EngineObserver) -> None:
        observer_id = observer.get_observer_id()
        if observer_id in self._observers:
            self.logger.warning(f"Observer {observer_id} is already subscribed")
            return
        self._observers[observer_id] = observer
        self.logger.info(f"Observer {observer_id} subscribed to "
                         f"{', '.join(c.value for c in observer.get_interested_changes())}")

    async def unsubscribe(self, observer: EngineObserver) -> None:
        if self._observers.pop(observer.get_observer_id(), None) is None:
            self.logger.warning(f"Observer {observer.get_observer_id()} was not subscribed")

    # ---------- lifecycle ------------------------------------------------- #
    async def start(self) -> None:
        if self.running:
            self.logger.warning("Event bus is already running")
            return
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="engine-event-bus")
        self.logger.info("Event bus started")

    async def stop(self) -> None:
        dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is None:
            return
        dispatcher.cancel()
        try:
            await dispatcher
        except asyncio.CancelledError:
            pass
        self.logger.info("Event bus stopped")

    # ---------- events ---------------------------------------------------- #
    def publish(self, event: DatasourceChangeEvent) -> bool:
        """Queue a change event; False when the queue is full and the event is dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.logger.error(f"Event queue full, dropping {event.change_type.value} "
                              f"for {event.datasource_id}")
            return False
        self.logger.debug(f"Queued {event.change_type.value} for {event.datasource_id}")
        return True

    async def join(self) -> None:
        """Wait until every queued event has been delivered."""
        await self._queue.join()

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: DatasourceChangeEvent) -> None:
        receivers = [o for o in list(self._observers.values())
                     if event.change_type in o.get_interested_changes()]
        if not receivers:
            self.logger.debug(f"Nobody listens to {event.change_type.value}")
            return

        self.logger.info(f"Delivering {event.change_type.value} for {event.datasource_id} "
                         f"to {len(receivers)} observer(s)")
        for observer in receivers:
            try:
                await observer.notify(event)
            except Exception as e:
                self.logger.error(f"Observer {observer.get_observer_id()} failed on "
                                  f"{event.change_type.value}: {e}", exc_info=True)
