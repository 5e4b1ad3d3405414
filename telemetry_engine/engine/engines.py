"""
Fleet manager.

Owns one Runtime per active datasource, drives the periodic poll and routes
on-demand polls and commands to the right runtime. Create, stop and restart
of one datasource are serialized by a lock of its own, so unrelated
datasources never wait on each other.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence
import asyncio
import logging

from config.app_config import settings
from ..core.exceptions import CommandStateError, DriverNotFound
from ..core.patterns import ChangeType, DatasourceChangeEvent, EngineObserver
from ..drivers import DriverRegistry
from ..models import CommandStatus, Datasource, DeviceCommand, Reading
from .runtime import Runtime
from .statistics import aggregate


class Engines(EngineObserver):
    """Map of datasource id -> Runtime plus the scheduler that polls them."""

    def __init__(
        self,
        driver_registry: DriverRegistry,
        *,
        datasource_store,
        device_store,
        reading_store,
        device_state_store,
        command_service=None,
        poll_interval_ms: Optional[int] = None,
    ):
        self.driver_registry = driver_registry
        self.datasource_store = datasource_store
        self.device_store = device_store
        self.reading_store = reading_store
        self.device_state_store = device_state_store
        self.command_service = command_service
        self.poll_interval_ms = poll_interval_ms or settings.ENGINE_POLL_INTERVAL_MS

        self._engines: Dict[str, Runtime] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)
        self._poll_tasks: Dict[str, asyncio.Task] = {}
        self._scheduler_task: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    # ---------- lifecycle ------------------------------------------------- #
    async def load_and_start_engines(self) -> int:
        """Start a runtime for every active datasource; returns how many run."""
        try:
            datasources = self.datasource_store.list_active()
        except Exception as e:
            self.logger.error(f"Failed to load active datasources: {e}", exc_info=True)
            return 0

        self.logger.info(f"Loading engines for {len(datasources)} active datasources")
        started = 0
        for datasource in datasources:
            try:
                if await self.create_and_start_engine(datasource):
                    started += 1
            except Exception as e:
                self.logger.error(f"Error starting engine for datasource {datasource.id}: {e}",
                                  exc_info=True)
        self.logger.info(f"{started}/{len(datasources)} engines running")
        return started

    async def create_and_start_engine(self, datasource: Datasource) -> bool:
        async with self._datasource_lock(datasource.id):
            return await self._create_and_start(datasource)

    async def _create_and_start(self, datasource: Datasource) -> bool:
        if datasource.id in self._engines:
            self.logger.info(f"Engine for datasource {datasource.id} already exists")
            return True
        if not datasource.active:
            self.logger.warning(f"Datasource {datasource.id} is not active, no engine created")
            return False

        try:
            driver = self.driver_registry.create_driver(datasource.driver_id)
        except DriverNotFound as e:
            self.logger.error(f"Cannot start datasource {datasource.id}: {e}")
            return False

        try:
            devices = [d for d in self.device_store.list_by_datasource(datasource.id) if d.active]
        except Exception as e:
            self.logger.error(f"Failed to load devices of datasource {datasource.id}: {e}", exc_info=True)
            return False
        if not devices:
            self.logger.warning(f"No devices found for datasource {datasource.id}, engine not created")
            return False

        runtime = Runtime(
            datasource,
            devices,
            driver,
            device_store       = self.device_store,
            reading_store      = self.reading_store,
            device_state_store = self.device_state_store,
            datasource_store   = self.datasource_store,
        )
        if not await runtime.start():
            self.logger.error(f"Failed to start engine for datasource {datasource.id}")
            return False

        self._engines[datasource.id] = runtime
        self.logger.info(f"Engine for datasource {datasource.id} started with {len(devices)} devices")
        return True

    async def stop_engine(self, datasource_id: str) -> bool:
        async with self._datasource_lock(datasource_id):
            return await self._stop(datasource_id)

    async def _stop(self, datasource_id: str) -> bool:
        runtime = self._engines.pop(datasource_id, None)
        if runtime is None:
            self.logger.warning(f"Engine for datasource {datasource_id} not found")
            return False
        await runtime.stop()
        self.logger.info(f"Engine for datasource {datasource_id} stopped")
        return True

    async def restart_engine(self, datasource_id: str) -> bool:
        async with self._datasource_lock(datasource_id):
            if not await self._stop(datasource_id):
                self.logger.warning(f"Failed to stop engine for datasource {datasource_id}")
                return False
            datasource = self.datasource_store.get_by_id(datasource_id)
            if datasource is None:
                self.logger.error(f"Datasource {datasource_id} not found for restarting")
                return False
            return await self._create_and_start(datasource)

    @asynccontextmanager
    async def _datasource_lock(self, datasource_id: str):
        """Serialize lifecycle changes of one datasource.

        The lock entry lives while a runtime exists or someone holds or waits
        on it, so unknown ids do not accumulate locks.
        """
        lock = self._locks.setdefault(datasource_id, asyncio.Lock())
        self._lock_users[datasource_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[datasource_id] -= 1
            if self._lock_users[datasource_id] == 0:
                del self._lock_users[datasource_id]
                if datasource_id not in self._engines:
                    self._locks.pop(datasource_id, None)

    async def shutdown(self) -> None:
        self.logger.info("Shutting down all engines")
        await self.stop_scheduler()
        for datasource_id, runtime in list(self._engines.items()):
            try:
                await runtime.stop()
            except Exception as e:
                self.logger.error(f"Error stopping engine for datasource {datasource_id}: {e}",
                                  exc_info=True)
        self._engines.clear()
        for datasource_id in [k for k in self._locks if k not in self._lock_users]:
            del self._locks[datasource_id]

    # ---------- queries --------------------------------------------------- #
    def get_engine(self, datasource_id: str) -> Optional[Runtime]:
        return self._engines.get(datasource_id)

    def get_active_engine_ids(self) -> List[str]:
        return list(self._engines.keys())

    def get_all_engine_status(self) -> Dict[str, bool]:
        return {ds_id: runtime.is_running() and runtime.is_connected()
                for ds_id, runtime in list(self._engines.items())}

    def get_engine_statistics(self, datasource_id: str) -> Dict[str, Any]:
        runtime = self._engines.get(datasource_id)
        return runtime.statistics().to_dict() if runtime else {}

    def get_all_engine_statistics(self) -> List[Dict[str, Any]]:
        return [runtime.statistics().to_dict() for runtime in list(self._engines.values())]

    def get_aggregate_statistics(self) -> Dict[str, Any]:
        return aggregate(runtime.statistics() for runtime in list(self._engines.values()))

    # ---------- polling --------------------------------------------------- #
    async def poll_engine(self, datasource_id: str) -> List[Reading]:
        runtime = self._engines.get(datasource_id)
        if runtime is None:
            self.logger.warning(f"Engine for datasource {datasource_id} not found")
            return []
        if not (runtime.is_running() and runtime.is_connected()):
            self.logger.warning(f"Engine for datasource {datasource_id} is not running/connected")
            return []
        return await runtime.poll()

    async def poll_devices(self, device_ids: Sequence[str]) -> List[Reading]:
        """Poll each datasource owning one of the devices once; keep only their readings."""
        if not device_ids:
            self.logger.warning("No device IDs provided for polling")
            return []

        by_datasource: Dict[str, set] = defaultdict(set)
        for device_id in device_ids:
            device = self.device_store.get_by_id(device_id)
            if device is None or not device.datasource_id:
                self.logger.debug(f"Unknown device {device_id}, skipped")
                continue
            by_datasource[device.datasource_id].add(device_id)

        targets = [(ds_id, ids) for ds_id, ids in by_datasource.items() if ds_id in self._engines]
        results = await asyncio.gather(*(self.poll_engine(ds_id) for ds_id, _ in targets),
                                       return_exceptions=True)

        readings: List[Reading] = []
        for (ds_id, ids), result in zip(targets, results):
            if isinstance(result, BaseException):
                self.logger.error(f"Error polling datasource {ds_id}: {result}")
                continue
            readings.extend(r for r in result if r.device_id in ids)
        return readings

    def poll_all_engines(self) -> List[asyncio.Task]:
        """Launch one poll task per connected runtime that is not already polling."""
        launched = []
        for datasource_id, runtime in list(self._engines.items()):
            runtime.sync_connection_state()
            if not (runtime.is_running() and runtime.is_connected()):
                continue

            previous = self._poll_tasks.get(datasource_id)
            if (previous is not None and not previous.done()) or runtime.is_busy():
                self.logger.debug(f"Engine {datasource_id} still busy, skipping this tick")
                continue

            task = asyncio.create_task(self._safe_poll(runtime), name=f"poll-{datasource_id}")
            self._poll_tasks[datasource_id] = task
            task.add_done_callback(lambda t, key=datasource_id: self._forget_poll(key, t))
            launched.append(task)

        self.logger.debug(f"Launched {len(launched)} polls across {len(self._engines)} engines")
        return launched

    async def _safe_poll(self, runtime: Runtime) -> List[Reading]:
        try:
            return await runtime.poll()
        except Exception as e:
            self.logger.error(f"Error polling engine for datasource {runtime.datasource_id}: {e}",
                              exc_info=True)
            return []

    def _forget_poll(self, datasource_id: str, task: asyncio.Task) -> None:
        if self._poll_tasks.get(datasource_id) is task:
            del self._poll_tasks[datasource_id]

    # ---------- scheduler ------------------------------------------------- #
    @property
    def scheduler_running(self) -> bool:
        return self._scheduler_task is not None and not self._scheduler_task.done()

    def start_scheduler(self) -> None:
        if self.scheduler_running:
            self.logger.warning("Scheduler is already running")
            return
        self._scheduler_task = asyncio.create_task(self._scheduler_loop(), name="engine-scheduler")
        self.logger.info(f"Scheduler started, polling every {self.poll_interval_ms} ms")

    async def stop_scheduler(self) -> None:
        task, self._scheduler_task = self._scheduler_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self.logger.info("Scheduler stopped")

        in_flight = [t for t in self._poll_tasks.values() if not t.done()]
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

    async def _scheduler_loop(self) -> None:
        interval = self.poll_interval_ms / 1000
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            try:
                self.poll_all_engines()
            except Exception as e:
                self.logger.error(f"Scheduler tick failed: {e}", exc_info=True)
            # Fixed rate: skip ticks that were missed rather than bunching them
            next_tick += interval
            now = loop.time()
            if next_tick < now:
                next_tick = now + interval
            await asyncio.sleep(next_tick - now)

    # ---------- commands -------------------------------------------------- #
    async def execute_command(self, command: DeviceCommand) -> bool:
        return await self._route(command, write=False)

    async def write_command(self, command: DeviceCommand) -> bool:
        return await self._route(command, write=True)

    async def _route(self, command: DeviceCommand, write: bool) -> bool:
        if command is None or not command.device_id or not command.datasource_id:
            self.logger.warning("Invalid command provided")
            return False
        if self._finished(command):
            self.logger.warning(f"Command {command.id} is already finished, not dispatching it again")
            return False

        runtime = self._engines.get(command.datasource_id)
        if runtime is None:
            self.logger.warning(f"Engine for datasource {command.datasource_id} not found")
            return False
        if not (runtime.is_running() and runtime.is_connected()):
            self.logger.warning(f"Engine for datasource {command.datasource_id} is not running/connected")
            return False

        self._track(command, CommandStatus.SENT)
        if write:
            success = await runtime.write_command(command)
        else:
            success = await runtime.execute_command(command)
        self._track(command, CommandStatus.COMPLETED if success else CommandStatus.FAILED,
                    None if success else "Driver rejected the command")
        return success

    def _finished(self, command: DeviceCommand) -> bool:
        if command.status is not None and command.status.terminal:
            return True
        if self.command_service is None:
            return False
        stored = self.command_service.get_command_by_id(command.id)
        return stored is not None and stored.status is not None and stored.status.terminal

    def _track(self, command: DeviceCommand, status: CommandStatus, message: Optional[str] = None) -> None:
        if self.command_service is None:
            return
        try:
            if self.command_service.get_command_by_id(command.id) is None:
                self.command_service.create_command(command)
            if status.terminal:
                self.command_service.update_command_result(command.id, status, message)
            else:
                self.command_service.update_command_status(command.id, status)
        except CommandStateError as e:
            self.logger.warning(str(e))

    # ---------- change notifications -------------------------------------- #
    async def notify(self, event: DatasourceChangeEvent) -> None:
        datasource_id = event.datasource_id
        if event.change_type == ChangeType.DATASOURCE_REMOVED:
            if datasource_id in self._engines:
                await self.stop_engine(datasource_id)
            return

        datasource = self.datasource_store.get_by_id(datasource_id)
        if datasource is None or not datasource.active:
            if datasource_id in self._engines:
                await self.stop_engine(datasource_id)
            return

        if event.change_type == ChangeType.DATASOURCE_ADDED or datasource_id not in self._engines:
            await self.create_and_start_engine(datasource)
        else:
            await self.restart_engine(datasource_id)

    def get_observer_id(self) -> str:
        return "engines"

    def get_interested_changes(self) -> List[ChangeType]:
        return [
            ChangeType.DATASOURCE_ADDED,
            ChangeType.DATASOURCE_MODIFIED,
            ChangeType.DATASOURCE_REMOVED,
            ChangeType.DEVICES_MODIFIED,
        ]
