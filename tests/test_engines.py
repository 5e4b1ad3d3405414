"""Tests for the fleet manager (Engines) and its scheduler."""

import asyncio

import pytest

from telemetry_engine.core.patterns import ChangeType, DatasourceChangeEvent, EngineEventBus, EngineObserver
from telemetry_engine.core.exceptions import DriverError
from telemetry_engine.models import (
    CommandStatus,
    CommandType,
    DeviceCommand,
    Property,
    ReadRequest,
    WriteRequest,
)

from .conftest import add_datasource

NO_DELAY = [Property("minConnectionDelay", "0"), Property("maxConnectionDelay", "0")]


class TestEngineLifecycle:

    @pytest.mark.asyncio
    async def test_create_and_start(self, engines, stores):
        datasource = add_datasource(stores, "ds-1", ["dev-1"])
        assert await engines.create_and_start_engine(datasource) is True
        assert engines.get_active_engine_ids() == ["ds-1"]

        runtime = engines.get_engine("ds-1")
        assert await engines.create_and_start_engine(datasource) is True
        assert engines.get_engine("ds-1") is runtime
        assert runtime.driver.connect_calls == 1

    @pytest.mark.asyncio
    async def test_zero_devices_never_creates_runtime(self, engines, stores):
        datasource = add_datasource(stores, "empty", [])
        assert await engines.create_and_start_engine(datasource) is False
        assert "empty" not in engines.get_active_engine_ids()

    @pytest.mark.asyncio
    async def test_unknown_driver(self, engines, stores):
        datasource = add_datasource(stores, "modbus", ["dev-m"], driver_id="modbus-driver-v9")
        assert await engines.create_and_start_engine(datasource) is False
        assert engines.get_active_engine_ids() == []

    @pytest.mark.asyncio
    async def test_failed_connect_is_not_registered(self, engines, stores, registry, monkeypatch):
        datasource = add_datasource(stores, "ds-down", ["dev-d"])
        original = registry.create_driver

        def refusing_driver(driver_id):
            driver = original(driver_id)
            driver.connect_result = False
            return driver

        monkeypatch.setattr(registry, "create_driver", refusing_driver)
        assert await engines.create_and_start_engine(datasource) is False
        assert engines.get_engine("ds-down") is None

    @pytest.mark.asyncio
    async def test_load_and_start_engines(self, engines, stores):
        add_datasource(stores, "good", ["g-1"])
        add_datasource(stores, "sim", ["s-1"], driver_id="test-driver-v1", configuration=NO_DELAY)
        add_datasource(stores, "empty", [])
        add_datasource(stores, "unknown", ["u-1"], driver_id="nope")
        add_datasource(stores, "inactive", ["i-1"], active=False)

        assert await engines.load_and_start_engines() == 2
        assert sorted(engines.get_active_engine_ids()) == ["good", "sim"]

    @pytest.mark.asyncio
    async def test_load_survives_store_failure(self, engines, stores, monkeypatch):
        add_datasource(stores, "good", ["g-1"])

        def broken(datasource_id):
            raise RuntimeError("database gone")

        monkeypatch.setattr(stores.devices, "list_by_datasource", broken)
        assert await engines.load_and_start_engines() == 0

    @pytest.mark.asyncio
    async def test_stop_engine(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        runtime = engines.get_engine("ds-1")

        assert await engines.stop_engine("ds-1") is True
        assert engines.get_active_engine_ids() == []
        assert not runtime.is_running()
        assert await engines.stop_engine("ds-1") is False

    @pytest.mark.asyncio
    async def test_restart_engine_builds_a_new_runtime(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        old = engines.get_engine("ds-1")

        assert await engines.restart_engine("ds-1") is True
        new = engines.get_engine("ds-1")
        assert new is not old
        assert new.driver is not old.driver
        assert new.is_running() and not old.is_running()

    @pytest.mark.asyncio
    async def test_restart_unknown_or_deleted(self, engines, stores):
        assert await engines.restart_engine("nothing") is False

        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        stores.datasources.delete("ds-1")
        assert await engines.restart_engine("ds-1") is False
        assert engines.get_active_engine_ids() == []

    @pytest.mark.asyncio
    async def test_lifecycle_locks_do_not_accumulate(self, engines, stores):
        for unknown in ("ghost-1", "ghost-2"):
            assert await engines.stop_engine(unknown) is False
            assert await engines.restart_engine(unknown) is False
        assert await engines.create_and_start_engine(add_datasource(stores, "empty", [])) is False
        assert engines._locks == {}

        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        assert set(engines._locks) == {"ds-1"}
        await engines.restart_engine("ds-1")
        assert set(engines._locks) == {"ds-1"}

        await engines.stop_engine("ds-1")
        assert engines._locks == {}
        assert engines._lock_users == {}

    @pytest.mark.asyncio
    async def test_shutdown(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "a", ["a-1"]))
        await engines.create_and_start_engine(add_datasource(stores, "b", ["b-1"]))
        runtimes = [engines.get_engine("a"), engines.get_engine("b")]

        async def broken_stop():
            raise RuntimeError("stuck")

        runtimes[0].stop = broken_stop
        engines.start_scheduler()
        await engines.shutdown()

        assert engines.get_active_engine_ids() == []
        assert not engines.scheduler_running
        assert not runtimes[1].is_running()


class TestStatus:

    @pytest.mark.asyncio
    async def test_status_and_statistics(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "a", ["a-1", "a-2"]))
        await engines.create_and_start_engine(add_datasource(stores, "b", ["b-1"]))
        await engines.poll_engine("a")

        engines.get_engine("b").driver.fail_with = DriverError("boom")
        engines.get_engine("b").driver.lose_connection_on_failure = True
        await engines.poll_engine("b")

        assert engines.get_all_engine_status() == {"a": True, "b": False}
        assert engines.get_engine_statistics("a")["readingCount"] == 4
        assert engines.get_engine_statistics("b")["status"] == "DISCONNECTED"
        assert engines.get_engine_statistics("missing") == {}
        assert len(engines.get_all_engine_statistics()) == 2

        totals = engines.get_aggregate_statistics()
        assert totals["engineCount"] == 2
        assert totals["runningCount"] == 2
        assert totals["connectedCount"] == 1
        assert totals["deviceCount"] == 3
        assert totals["totalPolls"] == 2
        assert totals["totalErrors"] == 1
        assert totals["totalReadings"] == 4


class TestPolling:

    @pytest.mark.asyncio
    async def test_poll_engine_unknown(self, engines):
        assert await engines.poll_engine("missing") == []

    @pytest.mark.asyncio
    async def test_poll_devices_across_datasources(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "ds-a", ["a-1", "a-2"]))
        await engines.create_and_start_engine(add_datasource(stores, "ds-b", ["b-1", "b-2"]))
        await engines.create_and_start_engine(add_datasource(stores, "ds-c", ["c-1"]))

        readings = await engines.poll_devices(["a-1", "b-2", "b-2", "unknown-device"])

        assert {r.device_id for r in readings} == {"a-1", "b-2"}
        assert len(readings) == 4
        assert engines.get_engine("ds-a").driver.execute_calls == 1
        assert engines.get_engine("ds-b").driver.execute_calls == 1
        assert engines.get_engine("ds-c").driver.execute_calls == 0

    @pytest.mark.asyncio
    async def test_poll_devices_empty(self, engines):
        assert await engines.poll_devices([]) == []

    @pytest.mark.asyncio
    async def test_poll_all_engines_skips_busy_runtime(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "slow", ["s-1"]))
        await engines.create_and_start_engine(add_datasource(stores, "fast", ["f-1"]))
        slow = engines.get_engine("slow").driver
        slow.gate = asyncio.Event()

        first = engines.poll_all_engines()
        assert len(first) == 2
        await asyncio.sleep(0.01)

        second = engines.poll_all_engines()
        assert [t.get_name() for t in second] == ["poll-fast"]

        slow.gate.set()
        await asyncio.gather(*first, *second)
        assert slow.execute_calls == 1
        assert engines.get_engine("fast").driver.execute_calls == 2

    @pytest.mark.asyncio
    async def test_poll_all_engines_ignores_disconnected(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "a", ["a-1"]))
        driver = engines.get_engine("a").driver
        driver.fail_with = DriverError("reset")
        driver.lose_connection_on_failure = True
        await engines.poll_engine("a")

        assert engines.poll_all_engines() == []
        assert driver.execute_calls == 1

    @pytest.mark.asyncio
    async def test_scheduler_polls_periodically(self, engines, stores):
        await engines.create_and_start_engine(add_datasource(stores, "a", ["a-1"]))
        engines.start_scheduler()
        assert engines.scheduler_running
        await asyncio.sleep(0.15)
        await engines.stop_scheduler()

        polls = engines.get_engine_statistics("a")["pollCount"]
        assert polls >= 2
        await asyncio.sleep(0.05)
        assert engines.get_engine_statistics("a")["pollCount"] == polls

    @pytest.mark.asyncio
    async def test_simulation_datasource_end_to_end(self, engines, stores):
        add_datasource(stores, "sim", ["s-1"], driver_id="test-driver-v1", configuration=NO_DELAY)
        await engines.load_and_start_engines()
        readings = await engines.poll_engine("sim")
        assert {r.signal_id for r in readings} == {"temp", "running"}
        assert all(r.valid for r in readings)


class TestCommandRouting:

    @pytest.mark.asyncio
    async def test_execute_command_tracks_status(self, engines, stores, command_service):
        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        command = DeviceCommand(datasource_id="ds-1", device_id="dev-1",
                                command_type=CommandType.READ, read=[ReadRequest("temp")])

        assert await engines.execute_command(command) is True
        stored = command_service.get_command_by_id(command.id)
        assert stored.status is CommandStatus.COMPLETED
        assert stored.sent_at is not None and stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_write_command(self, engines, stores, command_service):
        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        command = command_service.create_command(DeviceCommand(
            datasource_id="ds-1", device_id="dev-1",
            command_type=CommandType.WRITE, write=[WriteRequest("temp", "12")]))

        assert await engines.write_command(command) is True
        assert engines.get_engine("ds-1").driver.written == [command]
        assert command_service.get_command_by_id(command.id).status is CommandStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_command_is_marked_failed(self, engines, stores, command_service):
        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        engines.get_engine("ds-1").driver.fail_with = DriverError("nak")
        command = DeviceCommand(datasource_id="ds-1", device_id="dev-1",
                                command_type=CommandType.WRITE, write=[WriteRequest("temp", "12")])

        assert await engines.write_command(command) is False
        stored = command_service.get_command_by_id(command.id)
        assert stored.status is CommandStatus.FAILED
        assert stored.result_message

    @pytest.mark.asyncio
    async def test_finished_command_is_not_dispatched_again(self, engines, stores, command_service):
        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        driver = engines.get_engine("ds-1").driver
        command = command_service.create_command(DeviceCommand(
            datasource_id="ds-1", device_id="dev-1",
            command_type=CommandType.WRITE, write=[WriteRequest("temp", "12")]))
        assert await engines.write_command(command) is True
        completed_at = command.completed_at

        driver.fail_with = DriverError("nak")
        assert await engines.write_command(command) is False

        stored = command_service.get_command_by_id(command.id)
        assert stored.status is CommandStatus.COMPLETED
        assert stored.completed_at == completed_at
        assert driver.execute_calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_command_is_refused(self, engines, stores, command_service):
        await engines.create_and_start_engine(add_datasource(stores, "ds-1", ["dev-1"]))
        command = command_service.create_command(DeviceCommand(datasource_id="ds-1", device_id="dev-1"))
        command_service.update_command_status(command.id, CommandStatus.CANCELLED)

        assert await engines.execute_command(command) is False
        assert engines.get_engine("ds-1").driver.execute_calls == 0

    @pytest.mark.asyncio
    async def test_command_for_missing_runtime(self, engines):
        command = DeviceCommand(datasource_id="nowhere", device_id="dev-1")
        assert await engines.execute_command(command) is False
        assert await engines.execute_command(DeviceCommand(datasource_id="", device_id="x")) is False


class TestChangeEvents:

    @pytest.mark.asyncio
    async def test_events_drive_the_fleet(self, engines, stores):
        bus = EngineEventBus()
        await bus.subscribe(engines)
        await bus.start()
        try:
            add_datasource(stores, "ds-1", ["dev-1"])
            bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_ADDED, "ds-1"))
            await bus.join()
            first = engines.get_engine("ds-1")
            assert first is not None

            bus.publish(DatasourceChangeEvent(ChangeType.DEVICES_MODIFIED, "ds-1"))
            await bus.join()
            assert engines.get_engine("ds-1") is not first

            stores.datasources.update("ds-1", active=False)
            bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_MODIFIED, "ds-1"))
            await bus.join()
            assert engines.get_engine("ds-1") is None

            stores.datasources.update("ds-1", active=True)
            bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_MODIFIED, "ds-1"))
            await bus.join()
            assert engines.get_engine("ds-1") is not None

            bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_REMOVED, "ds-1"))
            await bus.join()
            assert engines.get_active_engine_ids() == []
        finally:
            await bus.stop()

    def test_observer_identity(self, engines):
        assert engines.get_observer_id() == "engines"
        assert set(engines.get_interested_changes()) == set(ChangeType)


class RecordingObserver(EngineObserver):

    def __init__(self, observer_id, interests, fail=False):
        self.observer_id = observer_id
        self.interests = interests
        self.fail = fail
        self.events = []

    async def notify(self, event):
        self.events.append(event)
        if self.fail:
            raise RuntimeError("observer crashed")

    def get_observer_id(self):
        return self.observer_id

    def get_interested_changes(self):
        return self.interests


class TestEventBus:

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_block_others(self):
        bus = EngineEventBus()
        crashing = RecordingObserver("crashing", list(ChangeType), fail=True)
        healthy = RecordingObserver("healthy", [ChangeType.DATASOURCE_ADDED])
        await bus.subscribe(crashing)
        await bus.subscribe(healthy)
        await bus.subscribe(RecordingObserver("healthy", []))
        assert bus.observer_count == 2

        await bus.start()
        try:
            bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_ADDED, "a"))
            bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_REMOVED, "a"))
            bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_ADDED, "b"))
            await bus.join()
        finally:
            await bus.stop()

        assert [e.datasource_id for e in crashing.events] == ["a", "a", "b"]
        assert [e.datasource_id for e in healthy.events] == ["a", "b"]
        assert not bus.running

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self):
        bus = EngineEventBus(max_queue_size=1)
        assert bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_ADDED, "a"))
        assert not bus.publish(DatasourceChangeEvent(ChangeType.DATASOURCE_ADDED, "b"))
        assert bus.pending == 1
