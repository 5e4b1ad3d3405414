"""Tests for driver registration and the driver registry."""

import pytest

from telemetry_engine.core.exceptions import DriverNotFound
from telemetry_engine.drivers import (
    DriverRegistry,
    MqttDriver,
    OpcUaDriver,
    SimulationDriver,
    driver_registry,
    register_driver,
    registered_drivers,
)
from telemetry_engine.models import DriverDefinition
from telemetry_engine.services import MemoryDriverDefinitionStore

from .conftest import ScriptedDriver


class BrokenDriver(ScriptedDriver):
    DRIVER_ID = "broken-driver"

    @classmethod
    def definition(cls):
        raise RuntimeError("cannot describe myself")


class TestRegistrationTable:

    def test_builtin_drivers_are_registered(self):
        table = registered_drivers()
        assert table["test-driver-v1"] is SimulationDriver
        assert table["opcua-driver-v1"] is OpcUaDriver
        assert table["mqtt-driver-v1"] is MqttDriver

    def test_register_driver_decorator(self, monkeypatch):
        monkeypatch.setattr(driver_registry, "_DRIVER_TABLE", {})

        @register_driver
        class ExtraDriver(ScriptedDriver):
            DRIVER_ID = "extra-driver"

        assert registered_drivers() == {"extra-driver": ExtraDriver}

    def test_register_driver_requires_id(self, monkeypatch):
        monkeypatch.setattr(driver_registry, "_DRIVER_TABLE", {})

        class Anonymous(ScriptedDriver):
            DRIVER_ID = ""

        with pytest.raises(ValueError):
            register_driver(Anonymous)


class TestDriverRegistry:

    def test_default_registry_uses_registration_table(self):
        registry = DriverRegistry()
        registry.initialize()
        assert {"test-driver-v1", "opcua-driver-v1", "mqtt-driver-v1"} <= set(registry.available_driver_ids())

    def test_create_driver_returns_fresh_instances(self, registry):
        first = registry.create_driver(ScriptedDriver.DRIVER_ID)
        second = registry.create_driver(ScriptedDriver.DRIVER_ID)
        assert isinstance(first, ScriptedDriver)
        assert first is not second
        assert not first.is_connected()

    def test_unknown_driver(self, registry):
        assert not registry.is_available("modbus-driver-v9")
        with pytest.raises(DriverNotFound) as excinfo:
            registry.create_driver("modbus-driver-v9")
        assert excinfo.value.driver_id == "modbus-driver-v9"

    def test_definitions_are_created(self, registry, stores):
        stored = stores.driver_definitions.get_by_id("test-driver-v1")
        assert stored is not None
        assert stored.created_at is not None
        assert [p.name for p in stored.connection_properties] == ["minConnectionDelay", "maxConnectionDelay"]
        assert registry.get_definition("test-driver-v1").tags == ["test", "simulation"]

    def test_existing_definitions_are_updated_never_deleted(self):
        store = MemoryDriverDefinitionStore()
        store.create(DriverDefinition(id="test-driver-v1", name="Old name", version="0.1"))
        store.create(DriverDefinition(id="retired-driver", name="Retired"))
        original = store.get_by_id("test-driver-v1")

        DriverRegistry({SimulationDriver.DRIVER_ID: SimulationDriver}).initialize(store)

        updated = store.get_by_id("test-driver-v1")
        assert updated is original
        assert updated.name == "Test Driver v1"
        assert updated.version == "1.0.0"
        assert updated.signal_properties
        assert updated.updated_at is not None
        assert store.get_by_id("retired-driver") is not None

    def test_failing_driver_is_skipped(self, stores):
        registry = DriverRegistry({
            BrokenDriver.DRIVER_ID: BrokenDriver,
            ScriptedDriver.DRIVER_ID: ScriptedDriver,
        })
        registry.initialize(stores.driver_definitions)
        assert registry.available_driver_ids() == [ScriptedDriver.DRIVER_ID]
        assert not registry.is_available(BrokenDriver.DRIVER_ID)
