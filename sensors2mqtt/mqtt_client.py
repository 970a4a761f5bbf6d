import asyncio
import json
import logging
from typing import Optional

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

logger = logging.getLogger(__name__)


class MQTTError(Exception):
    """Base class for broker failures."""


class ConnectFailure(MQTTError):
    """Broker unreachable or the connection was rejected."""


class PublishFailure(MQTTError):
    """A message could not be handed to the broker."""


class MQTTClient:
    """Awaitable wrapper around a paho client running its network loop in a thread."""

    def __init__(
        self,
        host: str,
        port: int = 1883,
        client_id: str = "",
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        connect_timeout: float = 10.0,
        publish_timeout: float = 10.0,
        client_factory=mqtt.Client,
    ):
        self.host = host
        self.port = port
        self.client_id = client_id
        self.username = username
        self.password = password
        self.keepalive = keepalive
        self.connect_timeout = connect_timeout
        self.publish_timeout = publish_timeout
        self.client_factory = client_factory
        self.client: Optional[mqtt.Client] = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def connect(self) -> None:
        loop = asyncio.get_running_loop()
        connack: asyncio.Future = loop.create_future()

        def resolve(reason_code):
            if not connack.done():
                connack.set_result(reason_code)

        def on_connect(client, userdata, flags, reason_code, properties):
            loop.call_soon_threadsafe(resolve, reason_code)

        client = self.client_factory(CallbackAPIVersion.VERSION2, client_id=self.client_id, clean_session=True)
        if self.username:
            client.username_pw_set(self.username, self.password)
        client.on_connect = on_connect
        client.on_disconnect = self._on_disconnect

        try:
            await asyncio.to_thread(client.connect, self.host, self.port, self.keepalive)
        except (OSError, ValueError) as exc:
            raise ConnectFailure(f"Cannot reach MQTT broker {self.host}:{self.port}: {exc}") from exc

        client.loop_start()
        try:
            reason_code = await asyncio.wait_for(connack, self.connect_timeout)
            if reason_code.is_failure:
                raise ConnectFailure(f"MQTT broker {self.host}:{self.port} rejected connection: {reason_code}")
        except asyncio.TimeoutError as exc:
            client.loop_stop()
            raise ConnectFailure(
                f"No CONNACK from {self.host}:{self.port} within {self.connect_timeout}s"
            ) from exc
        except BaseException:
            client.loop_stop()
            raise

        self.client = client
        logger.info("MQTT connected to %s:%s as %s", self.host, self.port, self.client_id)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.warning("MQTT disconnected unexpectedly: %s", reason_code)
        else:
            logger.info("MQTT disconnected")

    async def publish_json(self, topic: str, payload: dict, retain: bool = True) -> None:
        if self.client is None:
            raise PublishFailure(f"Cannot publish to {topic}: not connected")

        info = self.client.publish(topic, json.dumps(payload), qos=0, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishFailure(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")

        try:
            await asyncio.to_thread(info.wait_for_publish, self.publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise PublishFailure(f"Publish to {topic} failed: {exc}") from exc
        if not info.is_published():
            raise PublishFailure(f"Publish to {topic} not acknowledged within {self.publish_timeout}s")
        logger.debug("MQTT publish %s", topic)

    async def disconnect(self) -> None:
        if self.client is None:
            return
        client, self.client = self.client, None
        try:
            client.disconnect()
        finally:
            client.loop_stop()
