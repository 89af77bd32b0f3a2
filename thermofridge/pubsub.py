"""MQTT publish/subscribe client used for thermofridge messages."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

from .model import TargetState

log = logging.getLogger(__name__)

MessageHandler = Callable[[bytes], None]

TARGET_STATE_TOPIC = "thermofridge/set/target-state"
SESSION_EXPIRY_INTERVAL = 10 * 60


class PubSubError(Exception):
    """Publishing, subscribing or connecting to the broker failed."""


class PubSub:
    """A broker connection that dispatches messages to per-topic handlers."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        client_id: str = "thermofridge-api",
        qos: int = 1,
        client: Any = None,
    ) -> None:
        self.host = host
        self.port = port
        self.client_id = client_id
        self.qos = qos
        self.last_connect_error: str | None = None
        self._subscriptions: dict[str, MessageHandler] = {}
        self._lock = threading.Lock()
        self._connected = threading.Event()

        if client is None:
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
                protocol=mqtt.MQTTv5,
            )
        self._client = client
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_message = self._on_message

    def connect(self, timeout: float | None = None) -> None:
        """Start the network loop and wait until the broker accepts the connection."""
        properties = Properties(PacketTypes.CONNECT)
        properties.SessionExpiryInterval = SESSION_EXPIRY_INTERVAL
        try:
            self._client.connect_async(
                self.host, self.port, clean_start=False, properties=properties
            )
        except (OSError, ValueError) as exc:
            raise PubSubError(f"error creating pubsub connection: {exc}") from exc

        self._client.loop_start()
        if not self._connected.wait(timeout):
            self._client.loop_stop()
            raise PubSubError("error awaiting pubsub connection: timed out")

    def close(self) -> None:
        rc = self._client.disconnect()
        self._client.loop_stop()
        self._connected.clear()
        if rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            raise PubSubError(f"error disconnecting: {mqtt.error_string(rc)}")

    def publish(self, topic: str, payload: bytes) -> None:
        info = self._client.publish(topic, payload, qos=self.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PubSubError(f"error publishing message: {mqtt.error_string(info.rc)}")

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        with self._lock:
            self._subscriptions[topic] = handler
        result, _ = self._client.subscribe(topic, qos=self.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise PubSubError(f"error subscribing to topic: {mqtt.error_string(result)}")

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Pass a payload to the handler subscribed to exactly this topic."""
        with self._lock:
            handler = self._subscriptions.get(topic)
        if handler is None:
            return
        try:
            handler(payload)
        except Exception as exc:
            raise PubSubError(f"error handling message: {exc}") from exc

    def publish_target_state(self, state: TargetState) -> None:
        payload = json.dumps(state.to_dict(), separators=(",", ":")).encode()
        try:
            self.publish(TARGET_STATE_TOPIC, payload)
        except PubSubError as exc:
            raise PubSubError(f"error publishing target state: {exc}") from exc

    def _on_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            self.last_connect_error = str(reason_code)
            log.error("error with pubsub connection: %s", reason_code)
            return
        self.last_connect_error = None
        self._connected.set()

    def _on_connect_fail(self, client: Any, userdata: Any) -> None:
        self._connected.clear()
        self.last_connect_error = "connection attempt failed"
        log.error("error with pubsub connection: %s", self.last_connect_error)

    def _on_message(self, client: Any, userdata: Any, message: Any) -> None:
        try:
            self.handle_message(message.topic, message.payload)
        except PubSubError as exc:
            log.error("%s", exc)