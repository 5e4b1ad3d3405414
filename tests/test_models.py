"""Tests for the domain models and enumerations."""

from datetime import date, datetime, timezone

import pytest

from telemetry_engine.models import (
    CommandStatus,
    CommandType,
    DataType,
    Datasource,
    DeviceCommand,
    DeviceDefinition,
    DeviceState,
    HealthStatus,
    Reading,
    SignalConfiguration,
    SignalDefinition,
    WriteRequest,
    meta_id,
)


class TestMetaId:

    def test_deterministic(self):
        assert meta_id("ds", "dev", "sig") == meta_id("ds", "dev", "sig") == "ds:dev:sig"

    def test_differs_when_any_component_differs(self):
        base = meta_id("ds", "dev", "sig")
        assert meta_id("ds2", "dev", "sig") != base
        assert meta_id("ds", "dev2", "sig") != base
        assert meta_id("ds", "dev", "sig2") != base

    def test_separator_inside_component_cannot_collide(self):
        assert meta_id("a:b", "c", "d") != meta_id("a", "b:c", "d")
        assert meta_id("a\\", "b", "c") != meta_id("a", "\\b", "c")


class TestReading:

    def test_derived_fields(self):
        ts = datetime(2024, 3, 5, 17, 45, tzinfo=timezone.utc)
        reading = Reading("ds", "dev", "temp", value=21.5, timestamp=ts)
        assert reading.meta_id == "ds:dev:temp"
        assert reading.numeric_value == 21.5
        assert (reading.year, reading.month, reading.day, reading.hour) == (2024, 3, 5, 17)
        assert reading.valid is True and reading.in_alarm is False

    def test_timestamp_defaults_to_now(self):
        reading = Reading("ds", "dev", "temp", value=1)
        assert reading.timestamp.tzinfo is not None
        assert reading.year == reading.timestamp.year

    @pytest.mark.parametrize("value, expected", [
        (True, 1.0),
        (False, 0.0),
        (7, 7.0),
        ("12.5", 12.5),
        ("abc", None),
        (None, None),
        (b"\x01", None),
    ])
    def test_numeric_coercion(self, value, expected):
        assert Reading("ds", "dev", "s", value=value).numeric_value == expected

    def test_set_value_recomputes_numeric_value(self):
        reading = Reading("ds", "dev", "s", value=1)
        reading.set_value("3")
        assert reading.numeric_value == 3.0

    def test_to_row(self):
        row = Reading("ds", "dev", "s", value=date(2024, 1, 2)).to_row()
        assert row["value"] == "2024-01-02"
        assert row["metaId"] == "ds:dev:s"


class TestDataType:

    @pytest.mark.parametrize("data_type, value, valid", [
        (DataType.FLOAT, 1.5, True),
        (DataType.FLOAT, "2.5", True),
        (DataType.FLOAT, "hot", False),
        (DataType.FLOAT, True, False),
        (DataType.INTEGER, 3, True),
        (DataType.INTEGER, "3.5", False),
        (DataType.BOOLEAN, False, True),
        (DataType.BOOLEAN, "true", True),
        (DataType.BOOLEAN, "maybe", False),
        (DataType.BOOLEAN, 1, False),
        (DataType.STRING, 42, True),
        (DataType.DATE, "2024-01-31", True),
        (DataType.DATETIME, "2024-01-31T10:00:00Z", True),
        (DataType.DATETIME, "yesterday", False),
        (DataType.BINARY, b"\x00", True),
        (DataType.BINARY, "00", False),
        (DataType.DECIMAL, "1.25", True),
    ])
    def test_is_valid_value(self, data_type, value, valid):
        assert data_type.is_valid_value(value) is valid

    def test_none_is_valid_for_every_type(self):
        assert all(data_type.is_valid_value(None) for data_type in DataType)

    def test_parse(self):
        assert DataType.parse("FLOAT") is DataType.FLOAT
        assert DataType.parse("DateTime") is DataType.DATETIME
        assert DataType.parse(None) is None
        with pytest.raises(ValueError):
            DataType.parse("VECTOR")


class TestCommandStatus:

    def test_forward_moves_allowed(self):
        assert CommandStatus.PENDING.can_transition_to(CommandStatus.SENT)
        assert CommandStatus.SENT.can_transition_to(CommandStatus.COMPLETED)
        assert CommandStatus.ACKNOWLEDGED.can_transition_to(CommandStatus.FAILED)
        assert CommandStatus.PENDING.can_transition_to(CommandStatus.CANCELLED)

    def test_backward_and_post_terminal_moves_rejected(self):
        assert not CommandStatus.SENT.can_transition_to(CommandStatus.PENDING)
        assert not CommandStatus.COMPLETED.can_transition_to(CommandStatus.PENDING)
        assert not CommandStatus.FAILED.can_transition_to(CommandStatus.COMPLETED)
        assert not CommandStatus.CANCELLED.can_transition_to(CommandStatus.SENT)

    def test_repeating_status_is_allowed(self):
        assert CommandStatus.COMPLETED.can_transition_to(CommandStatus.COMPLETED)


class TestDeviceState:

    def test_degrade_only_from_healthy(self):
        state = DeviceState(device_id="dev")
        assert state.degrade_on_alarm() is True
        assert state.health_status is HealthStatus.DEGRADED
        assert state.degrade_on_alarm() is False

        critical = DeviceState(device_id="dev", health_status=HealthStatus.CRITICAL)
        critical.degrade_on_alarm()
        assert critical.health_status is HealthStatus.CRITICAL

    def test_upsert_signal_state_replaces_last_reading(self):
        state = DeviceState(device_id="dev")
        first = Reading("ds", "dev", "temp", value=1)
        second = Reading("ds", "dev", "temp", value=2)
        state.upsert_signal_state(first)
        state.upsert_signal_state(Reading("ds", "dev", "running", value=True))
        state.upsert_signal_state(second)

        assert [s.signal_id for s in state.signal_states] == ["temp", "running"]
        assert state.get_signal_state("temp").last_reading is second


class TestDeviceCommand:

    def test_transient_fields_are_not_serialized(self):
        command = DeviceCommand(
            datasource_id="ds",
            device_id="dev",
            command_type=CommandType.WRITE,
            write=[WriteRequest("setpoint", "42")],
            signal_configurations=[SignalConfiguration("setpoint")],
            signal_definitions=[SignalDefinition("setpoint")],
        )
        row = command.to_row()
        assert "signalConfigurations" not in row and "signal_configurations" not in row
        assert "signalDefinitions" not in row and "signal_definitions" not in row
        assert row["write"] == [{"signalId": "setpoint", "value": "42"}]

    def test_from_row(self):
        command = DeviceCommand.from_row({
            "datasourceId": "ds",
            "deviceId": "dev",
            "commandType": "READ",
            "read": [{"signalId": "temp"}],
            "status": "SENT",
        })
        assert command.id
        assert command.read[0].signal_id == "temp"
        assert command.status is CommandStatus.SENT


class TestConfigurationModels:

    def test_datasource_from_row(self):
        datasource = Datasource.from_row({
            "id": "ds",
            "name": "Plant",
            "driverId": "test-driver-v1",
            "configuration": [{"name": "host", "value": "10.0.0.1"}, {"name": "port", "value": 502}],
            "lastConnection": "2024-05-01T08:00:00Z",
        })
        assert datasource.get_property("host") == "10.0.0.1"
        assert datasource.get_property("port") == "502"
        assert datasource.get_property("missing", "fallback") == "fallback"
        assert datasource.last_connection.tzinfo is not None

    def test_device_definition_builds_conditions(self):
        definition = DeviceDefinition.from_row({
            "id": "def",
            "signals": [{
                "id": "temp",
                "type": "Float",
                "alarmsEnabled": True,
                "alarmConditions": [{"code": "HIGH", "severity": "MAJOR", "expression": "value > 1"}],
                "validateConditions": [{"code": "POS", "expression": "value >= 0"}],
            }],
        })
        signal = definition.find_signal("temp")
        assert signal.type is DataType.FLOAT
        assert signal.alarm_conditions[0].code == "HIGH"
        assert signal.validate_conditions[0].evaluate({"value": 3})
        assert definition.find_signal("ghost") is None
