"""
OPC UA driver built on asyncua.

Each configured signal names the node it maps to through the ``nodeId``
signal property. Reads are plain ``read_value`` calls per poll; writes are
coerced to the variant type the server declares for the node.
"""

import asyncio
from typing import Any, List, Optional

from asyncua import Client, ua

from ..core.exceptions import DriverError
from ..models import DataType, DeviceCommand, PropertyDefinition, Reading
from .base_driver import Driver
from .driver_registry import register_driver

_INTEGER_VARIANTS = {
    ua.VariantType.SByte, ua.VariantType.Byte,
    ua.VariantType.Int16, ua.VariantType.UInt16,
    ua.VariantType.Int32, ua.VariantType.UInt32,
    ua.VariantType.Int64, ua.VariantType.UInt64,
}
_FLOAT_VARIANTS = {ua.VariantType.Float, ua.VariantType.Double}


@register_driver
class OpcUaDriver(Driver):
    """opcua-driver-v1: polled node reads and typed writes."""

    DRIVER_ID = "opcua-driver-v1"
    NAME = "OPC UA Driver v1"
    DESCRIPTION = "Reads and writes OPC UA variable nodes"
    VERSION = "1.0.0"
    TAGS = ("opcua", "industrial")

    def __init__(self):
        super().__init__()
        self.client: Optional[Client] = None
        self._connected = False

    @classmethod
    def connection_properties(cls) -> List[PropertyDefinition]:
        return [
            PropertyDefinition(name="endpointUrl", required=True, value_type=DataType.STRING,
                               description="Server endpoint, e.g. opc.tcp://host:4840"),
            PropertyDefinition(name="username", value_type=DataType.STRING,
                               description="User name for authenticated sessions"),
            PropertyDefinition(name="password", value_type=DataType.STRING,
                               description="Password for authenticated sessions"),
            PropertyDefinition(name="timeout", value_type=DataType.INTEGER, default_value="10",
                               description="Request timeout in seconds"),
        ]

    @classmethod
    def signal_properties(cls) -> List[PropertyDefinition]:
        return [
            PropertyDefinition(name="nodeId", required=True, value_type=DataType.STRING,
                               description="Node identifier, e.g. ns=2;s=Boiler.Temperature"),
        ]

    # ---------- lifecycle ------------------------------------------------- #
    async def connect(self) -> bool:
        if self._connected:
            return True

        endpoint_url = self.get_property("endpointUrl")
        if not endpoint_url or not endpoint_url.startswith("opc.tcp://"):
            self.logger.error(f"Invalid OPC UA endpoint URL: {endpoint_url!r}")
            return False

        timeout = self.get_int_property("timeout", 10)
        try:
            self.client = Client(url=endpoint_url, timeout=timeout)
            username = self.get_property("username")
            password = self.get_property("password")
            if username and password:
                self.client.set_user(username)
                self.client.set_password(password)

            self.logger.info(f"Connecting to OPC UA server at {endpoint_url}")
            await asyncio.wait_for(self.client.connect(), timeout=timeout)
            self._connected = True
            self.logger.info("Successfully connected to OPC UA server")
            return True

        except asyncio.TimeoutError:
            self.logger.error(f"OPC UA connection timeout after {timeout}s")
        except Exception as e:
            self.logger.error(f"OPC UA connection failed: {e}")
        self.client = None
        return False

    async def disconnect(self) -> None:
        client, self.client = self.client, None
        self._connected = False
        if client is not None:
            await client.disconnect()
            self.logger.info("Disconnected from OPC UA server")

    def is_connected(self) -> bool:
        return self._connected

    # ---------- I/O ------------------------------------------------------- #
    async def read(self, commands: List[DeviceCommand]) -> List[Reading]:
        self._require_connection()
        readings = []
        for command in commands:
            for signal_id, _definition, configuration in self.requested_signals(command):
                node_id = configuration.get_property("nodeId") if configuration else None
                if not node_id:
                    self.logger.warning(f"Signal {signal_id} on {command.device_id} has no nodeId")
                    continue
                try:
                    value = await self.client.get_node(node_id).read_value()
                except ua.UaError as e:
                    # bad node or status: skip this signal only
                    self.logger.warning(f"Error reading node {node_id}: {e}")
                    continue
                except (OSError, asyncio.TimeoutError) as e:
                    self._connected = False
                    raise DriverError(f"OPC UA read failed: {e}") from e
                readings.append(self.make_reading(command, signal_id, value))
        return readings

    async def write(self, commands: List[DeviceCommand]) -> None:
        self._require_connection()
        for command in commands:
            for request in command.write:
                configuration = self.find_signal_configuration(command, request.signal_id)
                node_id = configuration.get_property("nodeId") if configuration else None
                if not node_id:
                    raise DriverError(f"Signal {request.signal_id} has no nodeId")
                try:
                    node = self.client.get_node(node_id)
                    variant_type = await node.read_data_type_as_variant_type()
                    value = coerce_for_variant(request.value, variant_type)
                    await node.write_value(ua.Variant(value, variant_type))
                except (OSError, asyncio.TimeoutError) as e:
                    self._connected = False
                    raise DriverError(f"OPC UA write failed: {e}") from e
                except (ua.UaError, ValueError) as e:
                    raise DriverError(f"OPC UA write to {node_id} failed: {e}") from e
                self.logger.info(f"Wrote {request.value!r} to node {node_id}")

    def _require_connection(self) -> None:
        if not self._connected or self.client is None:
            raise DriverError("OPC UA client is not connected")


def coerce_for_variant(value: Any, variant_type: "ua.VariantType") -> Any:
    """Convert a command value (often a string) to what the variant type expects."""
    if value is None:
        return None
    if variant_type == ua.VariantType.Boolean:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "on")
        return bool(value)
    if variant_type in _INTEGER_VARIANTS:
        return int(float(value))
    if variant_type in _FLOAT_VARIANTS:
        return float(value)
    if variant_type == ua.VariantType.String:
        return str(value)
    return value
