"""
Per-datasource runtime.

A Runtime owns one datasource snapshot, its devices and one driver
instance. Every operation that reaches the driver runs under the runtime's
lock, so the driver never sees two calls at once.
"""

from typing import Dict, List, Optional, Sequence
import asyncio
import logging

from ..conditions import AlarmCondition
from ..core.patterns import RuntimeState, StateMachine
from ..drivers import Driver
from ..models import (
    CommandType,
    Datasource,
    Device,
    DeviceCommand,
    DeviceDefinition,
    DeviceState,
    HealthStatus,
    Reading,
    SignalDefinition,
    utcnow,
)
from .statistics import EngineStatistics, derive_status


class Runtime:
    """Connect, poll, write and disconnect one datasource through its driver."""

    def __init__(
        self,
        datasource: Datasource,
        devices: Sequence[Device],
        driver: Driver,
        *,
        device_store,
        reading_store,
        device_state_store,
        datasource_store=None,
    ):
        self.datasource = datasource
        self.devices: List[Device] = list(devices)
        self.driver = driver
        self.device_store = device_store
        self.reading_store = reading_store
        self.device_state_store = device_state_store
        self.datasource_store = datasource_store

        self._state = StateMachine()
        self._lock = asyncio.Lock()
        self._stop_requested = False
        self._start_failed = False
        self._devices_by_id: Dict[str, Device] = {d.id: d for d in self.devices}

        self._last_poll_time = None
        self._last_successful_poll_time = None
        self._poll_count = 0
        self._error_count = 0
        self._reading_count = 0

        self.logger = logging.getLogger(self.__class__.__name__)

    # ---------- state ----------------------------------------------------- #
    @property
    def datasource_id(self) -> str:
        return self.datasource.id

    @property
    def state(self) -> RuntimeState:
        return self._state.state

    def is_running(self) -> bool:
        return self._state.running and not self._stop_requested

    def is_connected(self) -> bool:
        return self._state.connected

    def is_busy(self) -> bool:
        return self._lock.locked()

    def _dispatchable(self) -> bool:
        return self.is_running() and self.is_connected()

    # ---------- lifecycle ------------------------------------------------- #
    async def start(self) -> bool:
        """Initialize and connect the driver; True when already running."""
        async with self._lock:
            if self._state.running:
                self.logger.info(f"Runtime for datasource {self.datasource_id} is already running")
                return True
            if self._start_failed:
                return False

            self._stop_requested = False
            self._state.transition(RuntimeState.STARTING)
            self.logger.info(f"Starting runtime for datasource {self.datasource_id}")

            try:
                self.driver.initialize(self.datasource)
                connected = await self.driver.connect()
            except Exception as e:
                self.logger.error(f"Error starting runtime for datasource {self.datasource_id}: {e}",
                                  exc_info=True)
                connected = False

            if not connected:
                self.logger.error(f"Failed to connect to datasource {self.datasource_id}")
                self._state.transition(RuntimeState.STOPPED)
                self._start_failed = True
                self._record_connectivity(connected=False, connection_status="Connection failed")
                return False

            self._state.transition(RuntimeState.CONNECTED)
            self._record_connectivity(connected=True, connection_status="Connected",
                                      last_connection=utcnow())
            self.logger.info(f"Runtime for datasource {self.datasource_id} started successfully")
            return True

    async def stop(self) -> bool:
        """Disconnect and end in STOPPED; an in-flight poll finishes first."""
        self._stop_requested = True
        async with self._lock:
            self._start_failed = False
            if self._state.state == RuntimeState.STOPPED:
                return True

            self.logger.info(f"Stopping runtime for datasource {self.datasource_id}")
            try:
                await self.driver.disconnect()
            except Exception as e:
                self.logger.error(f"Error disconnecting datasource {self.datasource_id}: {e}",
                                  exc_info=True)
            finally:
                self._state.force_stop()
                self._record_connectivity(connected=False, connection_status="Disconnected")
            self.logger.info(f"Runtime for datasource {self.datasource_id} stopped")
            return True

    def sync_connection_state(self) -> RuntimeState:
        """Follow a driver that reconnected on its own (DISCONNECTED -> CONNECTED)."""
        if (self._state.state == RuntimeState.DISCONNECTED and not self._lock.locked()
                and self.driver.is_connected()):
            self._state.transition(RuntimeState.CONNECTED)
            self.logger.info(f"Datasource {self.datasource_id} reconnected")
        return self._state.state

    # ---------- polling --------------------------------------------------- #
    async def poll(self) -> List[Reading]:
        if not self._dispatchable():
            self.logger.debug(f"Cannot poll: runtime for {self.datasource_id} is not running/connected")
            return []

        async with self._lock:
            if not self._dispatchable():
                return []

            self._last_poll_time = utcnow()
            self._poll_count += 1
            definitions: Dict[str, Optional[DeviceDefinition]] = {}

            try:
                commands = [self._read_command(device, definitions)
                            for device in self.devices if device.active]
                raw_readings = await self.driver.execute(commands)
            except Exception as e:
                self._error_count += 1
                self.logger.error(f"Error polling devices for datasource {self.datasource_id}: {e}",
                                  exc_info=True)
                self._mark_disconnected_if_lost()
                return []

            readings = self._process_readings(raw_readings or [], definitions)
            self._last_successful_poll_time = utcnow()
            self._reading_count += len(readings)
            self.logger.debug(f"Poll of {self.datasource_id} produced {len(readings)} readings")
            return readings

    def _read_command(self, device: Device, definitions) -> DeviceCommand:
        command = DeviceCommand(
            datasource_id = self.datasource_id,
            device_id     = device.id,
            command_type  = CommandType.READ,
        )
        self._enrich(command, device, definitions)
        return command

    def _enrich(self, command: DeviceCommand, device: Device, definitions) -> None:
        """Attach the signal wiring and definitions the driver needs."""
        definition = self._definition_for(device, definitions)
        configurations, signal_definitions = [], []
        for configuration in device.signal_configurations:
            signal = definition.find_signal(configuration.signal_id) if definition else None
            if signal is None:
                continue
            configurations.append(configuration)
            signal_definitions.append(signal)
        command.signal_configurations = configurations
        command.signal_definitions = signal_definitions

    def _definition_for(self, device: Device, cache: Dict[str, Optional[DeviceDefinition]]):
        definition_id = device.device_definition_id
        if not definition_id:
            return None
        if definition_id not in cache:
            cache[definition_id] = self.device_store.get_device_definition(definition_id)
        return cache[definition_id]

    # ---------- reading pipeline ------------------------------------------ #
    def _process_readings(self, raw_readings: List[Reading],
                          definitions: Dict[str, Optional[DeviceDefinition]]) -> List[Reading]:
        processed: List[Reading] = []
        states: Dict[str, DeviceState] = {}
        new_states = set()
        # devices whose stored state could not be loaded this cycle
        unavailable = set()

        for reading in raw_readings:
            device = self._devices_by_id.get(reading.device_id)
            definition = self._definition_for(device, definitions) if device else None
            signal = definition.find_signal(reading.signal_id) if definition else None
            if signal is None:
                self.logger.debug(f"Dropping reading for unknown signal {reading.meta_id}")
                continue

            reading.valid = self._is_valid(reading, signal)
            if reading.valid and signal.alarms_enabled:
                self._detect_alarm(reading, signal.alarm_conditions)

            try:
                self.reading_store.create(reading)
            except Exception as e:
                self.logger.error(f"Failed to persist reading {reading.meta_id}: {e}", exc_info=True)

            processed.append(reading)
            if device.id in unavailable:
                continue

            state = states.get(device.id)
            if state is None:
                try:
                    state = self.device_state_store.get_by_device_id(device.id)
                except Exception as e:
                    self._error_count += 1
                    unavailable.add(device.id)
                    self.logger.error(f"Failed to load state of device {device.id}: {e}", exc_info=True)
                    continue
                if state is None:
                    state = DeviceState(device_id=device.id, connected=True,
                                        connection_status="Connected",
                                        health_status=HealthStatus.HEALTHY)
                    new_states.add(device.id)
                states[device.id] = state

            state.upsert_signal_state(reading)
            if reading.in_alarm and state.degrade_on_alarm():
                self.logger.warning(f"Device {device.id} degraded: {reading.alarm_message}")

        self._flush_states(states, new_states)
        return processed

    def _is_valid(self, reading: Reading, signal: SignalDefinition) -> bool:
        if signal.type is not None and not signal.type.is_valid_value(reading.value):
            self.logger.debug(f"{reading.meta_id}: {reading.value!r} is not a valid {signal.type.value}")
            return False
        for condition in signal.validate_conditions:
            try:
                satisfied = condition.evaluate_reading(reading)
            except Exception as e:
                self.logger.warning(f"Validate condition {condition.code or condition.id} failed: {e}")
                satisfied = False
            if not satisfied:
                return False
        return True

    def _detect_alarm(self, reading: Reading, conditions: List[AlarmCondition]) -> None:
        # First matching condition in declaration order wins
        for condition in conditions:
            try:
                matched = condition.evaluate_reading(reading)
            except Exception as e:
                self.logger.warning(f"Alarm condition {condition.code or condition.id} failed: {e}")
                continue
            if matched:
                reading.in_alarm = True
                reading.alarm_severity = condition.severity
                reading.alarm_message = condition.message
                return

    def _flush_states(self, states: Dict[str, DeviceState], new_states: set) -> None:
        for device_id, state in states.items():
            try:
                if device_id in new_states:
                    self.device_state_store.create(state)
                else:
                    self.device_state_store.update(state.id, state)
            except Exception as e:
                self.logger.error(f"Failed to persist state of device {device_id}: {e}", exc_info=True)

    # ---------- commands -------------------------------------------------- #
    async def execute_command(self, command: DeviceCommand) -> bool:
        if not self._dispatchable():
            self.logger.warning(f"Cannot execute command: runtime for {self.datasource_id} "
                                f"is not running/connected")
            return False

        async with self._lock:
            if not self._dispatchable():
                return False

            device = self._devices_by_id.get(command.device_id)
            if device is None:
                self.logger.warning(f"Device {command.device_id} is not served by {self.datasource_id}")
                return False

            try:
                self._enrich(command, device, {})
                await self.driver.execute([command])
            except Exception as e:
                self._error_count += 1
                self.logger.error(f"Error executing command on device {command.device_id}: {e}",
                                  exc_info=True)
                self._mark_disconnected_if_lost()
                return False

            self.logger.debug(f"Command {command.id} executed for device {command.device_id}")
            return True

    async def write_command(self, command: DeviceCommand) -> bool:
        if command.command_type != CommandType.WRITE or not command.write:
            self.logger.warning(f"Command {command.id} carries no write requests")
            return False
        return await self.execute_command(command)

    def _mark_disconnected_if_lost(self) -> None:
        try:
            lost = not self.driver.is_connected()
        except Exception:
            lost = True
        if lost and self._state.transition(RuntimeState.DISCONNECTED):
            self.logger.warning(f"Datasource {self.datasource_id} lost its connection")
            self._record_connectivity(connected=False, connection_status="Connection lost")

    # ---------- bookkeeping ----------------------------------------------- #
    def _record_connectivity(self, **changes) -> None:
        if self.datasource_store is None:
            return
        try:
            self.datasource_store.update(self.datasource_id, **changes)
        except Exception as e:
            self.logger.warning(f"Could not update connectivity of {self.datasource_id}: {e}")

    def statistics(self) -> EngineStatistics:
        return EngineStatistics(
            datasource_id             = self.datasource_id,
            datasource_name           = self.datasource.name,
            device_count              = len(self.devices),
            running                   = self.is_running(),
            connected                 = self.is_connected(),
            last_poll_time            = self._last_poll_time,
            last_successful_poll_time = self._last_successful_poll_time,
            poll_count                = self._poll_count,
            error_count               = self._error_count,
            reading_count             = self._reading_count,
        )

    @property
    def status(self) -> str:
        return derive_status(self.is_running(), self.is_connected())
