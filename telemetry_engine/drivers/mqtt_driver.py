"""
MQTT driver built on paho-mqtt.

Telemetry arrives asynchronously on the paho network thread and is cached
per topic; a poll returns the last payload seen on each configured topic.
Writes publish to the signal's ``writeTopic`` (or its ``topic``).
"""

import asyncio
import json
import threading
from typing import Any, Dict, List, Optional, Set

import paho.mqtt.client as mqtt

from ..core.exceptions import DriverError
from ..models import DataType, DeviceCommand, PropertyDefinition, Reading
from .base_driver import Driver
from .driver_registry import register_driver

_MISSING = object()


@register_driver
class MqttDriver(Driver):
    """mqtt-driver-v1: subscribe-and-cache reads, publish writes."""

    DRIVER_ID = "mqtt-driver-v1"
    NAME = "MQTT Driver v1"
    DESCRIPTION = "Caches the latest payload of subscribed topics and publishes writes"
    VERSION = "1.0.0"
    TAGS = ("mqtt", "iot")

    def __init__(self):
        super().__init__()
        self.client: Optional[mqtt.Client] = None
        self.qos = 0
        self.subscribed_topics: Set[str] = set()
        self._cache: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def connection_properties(cls) -> List[PropertyDefinition]:
        return [
            PropertyDefinition(name="host", required=True, value_type=DataType.STRING,
                               default_value="localhost", description="Broker host"),
            PropertyDefinition(name="port", value_type=DataType.INTEGER, default_value="1883",
                               description="Broker port"),
            PropertyDefinition(name="clientId", value_type=DataType.STRING,
                               description="Client identifier, generated when empty"),
            PropertyDefinition(name="username", value_type=DataType.STRING),
            PropertyDefinition(name="password", value_type=DataType.STRING),
            PropertyDefinition(name="keepalive", value_type=DataType.INTEGER, default_value="60"),
            PropertyDefinition(name="qos", value_type=DataType.INTEGER, default_value="0",
                               allowed_values={"0": "At most once", "1": "At least once",
                                               "2": "Exactly once"}),
            PropertyDefinition(name="timeout", value_type=DataType.INTEGER, default_value="10",
                               description="Connection timeout in seconds"),
        ]

    @classmethod
    def signal_properties(cls) -> List[PropertyDefinition]:
        return [
            PropertyDefinition(name="topic", required=True, value_type=DataType.STRING,
                               description="Topic carrying the signal value"),
            PropertyDefinition(name="writeTopic", value_type=DataType.STRING,
                               description="Topic written values are published to"),
            PropertyDefinition(name="jsonPath", value_type=DataType.STRING,
                               description="Dotted path into a JSON payload, e.g. data.temperature"),
        ]

    # ---------- lifecycle ------------------------------------------------- #
    async def connect(self) -> bool:
        if self.is_connected():
            return True

        host = self.get_property("host", "localhost")
        port = self.get_int_property("port", 1883)
        keepalive = self.get_int_property("keepalive", 60)
        timeout = self.get_int_property("timeout", 10)
        self.qos = self.get_int_property("qos", 0)
        client_id = self.get_property("clientId") or f"telemetry-{self.datasource.id if self.datasource else 'engine'}"

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        username = self.get_property("username")
        if username:
            self.client.username_pw_set(username, self.get_property("password"))
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        try:
            self.logger.info(f"Connecting to MQTT broker at {host}:{port}")
            result = await asyncio.to_thread(self.client.connect, host, port, keepalive)
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise ConnectionError(f"MQTT connection failed with code: {result}")

            # Network loop runs on paho's own thread
            self.client.loop_start()

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            while not self.client.is_connected():
                if loop.time() - start_time > timeout:
                    raise TimeoutError(f"Connection timeout after {timeout}s")
                await asyncio.sleep(0.1)

            self.logger.info("Successfully connected to MQTT broker")
            return True

        except Exception as e:
            self.logger.error(f"MQTT connection failed: {e}")
            self.client.loop_stop()
            self.client = None
            return False

    async def disconnect(self) -> None:
        client, self.client = self.client, None
        self.subscribed_topics.clear()
        if client is not None:
            client.disconnect()
            client.loop_stop()
            self.logger.info("Disconnected from MQTT broker")

    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_connected()

    # ---------- paho callbacks (network thread) --------------------------- #
    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self.logger.error(f"MQTT connection refused: {reason_code}")
            return
        self.logger.info(f"Connected to MQTT broker with flags: {flags}")
        # Broker forgets subscriptions of a clean session on reconnect
        for topic in list(self.subscribed_topics):
            client.subscribe(topic, self.qos)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        if reason_code.is_failure:
            self.logger.warning(f"Unexpected disconnection from MQTT broker ({reason_code})")
        else:
            self.logger.info("Disconnected from MQTT broker")

    def _on_message(self, client, userdata, msg):
        payload = decode_payload(msg.payload)
        with self._lock:
            self._cache[msg.topic] = payload

    # ---------- I/O ------------------------------------------------------- #
    async def read(self, commands: List[DeviceCommand]) -> List[Reading]:
        if not self.is_connected():
            raise DriverError("MQTT client is not connected")

        readings = []
        for command in commands:
            for signal_id, _definition, configuration in self.requested_signals(command):
                topic = configuration.get_property("topic") if configuration else None
                if not topic:
                    self.logger.warning(f"Signal {signal_id} on {command.device_id} has no topic")
                    continue
                self._ensure_subscribed(topic)

                with self._lock:
                    payload = self._cache.get(topic, _MISSING)
                if payload is _MISSING:
                    continue

                value = extract_json_path(payload, configuration.get_property("jsonPath"))
                if value is _MISSING:
                    self.logger.debug(f"jsonPath not found in payload of {topic}")
                    continue
                readings.append(self.make_reading(command, signal_id, value))
        return readings

    async def write(self, commands: List[DeviceCommand]) -> None:
        if not self.is_connected():
            raise DriverError("MQTT client is not connected")

        for command in commands:
            for request in command.write:
                configuration = self.find_signal_configuration(command, request.signal_id)
                topic = None
                if configuration is not None:
                    topic = configuration.get_property("writeTopic") or configuration.get_property("topic")
                if not topic:
                    raise DriverError(f"Signal {request.signal_id} has no topic to publish to")

                payload = request.value
                if isinstance(payload, (dict, list)):
                    payload = json.dumps(payload)
                elif payload is not None and not isinstance(payload, (str, bytes)):
                    payload = str(payload)

                result = self.client.publish(topic, payload, self.qos)
                if result.rc != mqtt.MQTT_ERR_SUCCESS:
                    raise DriverError(f"Failed to publish to topic '{topic}': {result.rc}")
                self.logger.info(f"Published {request.value!r} to topic '{topic}'")

    def _ensure_subscribed(self, topic: str) -> None:
        if topic in self.subscribed_topics:
            return
        result, _mid = self.client.subscribe(topic, self.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise DriverError(f"Failed to subscribe to topic '{topic}': {result}")
        self.subscribed_topics.add(topic)
        self.logger.info(f"Subscribed to topic '{topic}' with QoS {self.qos}")


def decode_payload(payload: Any) -> Any:
    """UTF-8 JSON when possible, else the raw text."""
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return bytes(payload)
    try:
        return json.loads(payload)
    except (json.JSONDecodeError, TypeError):
        return payload


def extract_json_path(payload: Any, path: Optional[str]) -> Any:
    """Walk a dotted path (``a.b.0.c``) through dicts and lists."""
    cleaned = (path or "").strip().lstrip("$").strip(".")
    if not cleaned:
        return payload
    current = payload
    for part in cleaned.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.lstrip("-").isdigit() and -len(current) <= int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current
