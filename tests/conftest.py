"""
Shared fixtures for engine tests.

Everything runs against the in-memory stores and a scripted driver; no test
touches the network.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from telemetry_engine.drivers import Driver, DriverRegistry, SimulationDriver
from telemetry_engine.engine import Engines, Runtime
from telemetry_engine.models import (
    Datasource,
    Device,
    DeviceCommand,
    DeviceDefinition,
    Property,
    Reading,
    SignalConfiguration,
)
from telemetry_engine.services import DeviceCommandService, MemoryStores


class ScriptedDriver(Driver):
    """Driver double whose behaviour each test scripts directly."""

    DRIVER_ID = "scripted-driver"
    NAME = "Scripted Driver"

    def __init__(self):
        super().__init__()
        self.connected = False
        self.connect_result = True
        self.connect_calls = 0
        self.execute_calls = 0
        self.disconnect_calls = 0
        self.values: Dict[str, Any] = {}
        self.extra_readings: List[Reading] = []
        self.fail_with: Optional[Exception] = None
        self.disconnect_error: Optional[Exception] = None
        self.lose_connection_on_failure = False
        self.gate: Optional[asyncio.Event] = None
        self.written: List[DeviceCommand] = []
        self.seen_commands: List[DeviceCommand] = []

    async def connect(self) -> bool:
        self.connect_calls += 1
        self.connected = self.connect_result
        return self.connect_result

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    def is_connected(self) -> bool:
        return self.connected

    async def execute(self, commands):
        self.execute_calls += 1
        self.seen_commands.extend(commands)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            if self.lose_connection_on_failure:
                self.connected = False
            raise self.fail_with
        return await super().execute(commands)

    async def read(self, commands):
        readings = []
        for command in commands:
            for signal_id, _definition, _configuration in self.requested_signals(command):
                value = self.values.get((command.device_id, signal_id), self.values.get(signal_id, 1.0))
                readings.append(self.make_reading(command, signal_id, value))
        return readings + list(self.extra_readings)

    async def write(self, commands):
        self.written.extend(commands)


SCENARIO_DEFINITION = {
    "id": "sensor-def",
    "name": "Sensor",
    "signals": [
        {
            "id": "temp",
            "name": "Temperature",
            "type": "FLOAT",
            "unit": "°C",
            "alarmsEnabled": True,
            "alarmConditions": [
                {"code": "TEMP_HIGH", "description": "Temperature too high",
                 "severity": "MAJOR", "expression": "numericValue > 50"},
            ],
        },
        {"id": "running", "name": "Running", "type": "BOOLEAN"},
    ],
}


def add_datasource(stores: MemoryStores, datasource_id: str, device_ids: List[str],
                   driver_id: str = ScriptedDriver.DRIVER_ID, active: bool = True,
                   configuration: Optional[List[Property]] = None) -> Datasource:
    """Store a datasource with scenario devices (temp + running signals)."""
    if stores.devices.get_device_definition("sensor-def") is None:
        stores.devices.create_definition(DeviceDefinition.from_row(SCENARIO_DEFINITION))
    datasource = stores.datasources.create(Datasource(
        id=datasource_id,
        name=f"Datasource {datasource_id}",
        driver_id=driver_id,
        active=active,
        configuration=configuration or [],
    ))
    for device_id in device_ids:
        stores.devices.create(Device(
            id=device_id,
            datasource_id=datasource_id,
            device_definition_id="sensor-def",
            signal_configurations=[
                SignalConfiguration("temp"),
                SignalConfiguration("running"),
            ],
        ))
    return datasource


@pytest.fixture
def stores():
    return MemoryStores()


@pytest.fixture
def driver():
    return ScriptedDriver()


@pytest.fixture
def scenario(stores):
    """One datasource, one device, a FLOAT signal with an alarm and a BOOLEAN."""
    return add_datasource(stores, "ds-1", ["dev-1"])


@pytest.fixture
def runtime(stores, scenario, driver):
    return Runtime(
        scenario,
        stores.devices.list_by_datasource(scenario.id),
        driver,
        device_store=stores.devices,
        reading_store=stores.readings,
        device_state_store=stores.device_states,
        datasource_store=stores.datasources,
    )


@pytest.fixture
def registry(stores):
    registry = DriverRegistry({
        ScriptedDriver.DRIVER_ID: ScriptedDriver,
        SimulationDriver.DRIVER_ID: SimulationDriver,
    })
    registry.initialize(stores.driver_definitions)
    return registry


@pytest.fixture
def command_service(stores):
    return DeviceCommandService(stores.commands)


@pytest.fixture
def engines(stores, registry, command_service):
    return Engines(
        registry,
        datasource_store=stores.datasources,
        device_store=stores.devices,
        reading_store=stores.readings,
        device_state_store=stores.device_states,
        command_service=command_service,
        poll_interval_ms=20,
    )
