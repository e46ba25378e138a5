"""MQTT publisher channel with a single-consumer publish queue.

Device timers call :meth:`PublisherChannel.publish` from many threads; the
messages are queued and handed to paho by one background thread, so the
transport is only ever driven from a single place.
"""

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from .config import MQTTConfig
from .errors import BrokerConnectionError, NotConnectedError, PublishFailure

logger = logging.getLogger(__name__)

# scheme -> (default port, tls, transport)
_SCHEMES = {
    "mqtt": (1883, False, "tcp"),
    "tcp": (1883, False, "tcp"),
    "mqtts": (8883, True, "tcp"),
    "ssl": (8883, True, "tcp"),
    "ws": (80, False, "websockets"),
    "wss": (443, True, "websockets"),
}


@dataclass
class BrokerAddress:
    """Broker endpoint parsed from a URL."""

    host: str
    port: int
    tls: bool = False
    transport: str = "tcp"
    path: str = "/mqtt"


def parse_broker_url(url: str) -> BrokerAddress:
    """Parse ``mqtt://host:port`` style URLs. A bare ``host[:port]`` means mqtt://."""
    if "://" not in url:
        url = f"mqtt://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in _SCHEMES:
        raise ValueError(f"Unsupported broker URL scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ValueError(f"Broker URL has no host: {url}")

    default_port, tls, transport = _SCHEMES[parsed.scheme]
    return BrokerAddress(
        host=parsed.hostname,
        port=parsed.port or default_port,
        tls=tls,
        transport=transport,
        path=parsed.path or "/mqtt",
    )


@dataclass
class Message:
    """MQTT message to be published."""

    topic: str
    payload: Dict[str, Any]
    retain: bool = False
    qos: int = 1
    device_id: Optional[str] = None


class PublisherChannel:
    """One persistent broker connection shared by the whole fleet."""

    def __init__(
        self,
        mqtt_config: MQTTConfig,
        on_publish_failure: Optional[Callable[[PublishFailure], None]] = None,
        on_command: Optional[Callable[[str], None]] = None,
    ):
        self.mqtt_config = mqtt_config
        self.on_publish_failure = on_publish_failure
        self.on_command = on_command

        self._client: Optional[mqtt.Client] = None
        self._client_id: Optional[str] = None
        self._connected = False
        self._connect_event = threading.Event()
        self._connect_error: Optional[str] = None
        self._publish_queue: Queue[Message] = Queue()
        self._publish_thread: Optional[threading.Thread] = None
        self._running = False
        self._dry_run = False

        # Stats
        self._messages_published = 0
        self._messages_dropped = 0
        self._stats_lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    def is_connected(self) -> bool:
        return self._connected

    @property
    def client_id(self) -> Optional[str]:
        return self._client_id

    @property
    def messages_published(self) -> int:
        return self._messages_published

    @property
    def messages_dropped(self) -> int:
        return self._messages_dropped

    @property
    def control_topic(self) -> str:
        return f"{self.mqtt_config.control_root}/control"

    @property
    def status_topic(self) -> str:
        return f"{self.mqtt_config.control_root}/status"

    def connect(self, dry_run: bool = False) -> None:
        """Connect to the broker and wait for its acknowledgement.

        Raises:
            BrokerConnectionError: the socket could not be opened, the broker
                refused the session, or no CONNACK arrived within
                ``connect_timeout_s``.
        """
        if self._connected:
            logger.debug("Already connected to MQTT broker")
            return

        self._dry_run = dry_run
        self._client_id = f"{self.mqtt_config.client_id_prefix}-{uuid.uuid4()}"

        if dry_run:
            logger.info("Dry run mode - not connecting to MQTT broker")
            self._connected = True
            self._start_publish_thread()
            return

        try:
            address = parse_broker_url(self.mqtt_config.broker_url)
        except ValueError as e:
            raise BrokerConnectionError(str(e)) from e

        self._connect_event.clear()
        self._connect_error = None

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            clean_session=True,
            transport=address.transport,
        )
        if address.transport == "websockets":
            client.ws_set_options(path=address.path)
        if address.tls:
            client.tls_set()
        if self.mqtt_config.username:
            client.username_pw_set(self.mqtt_config.username, self.mqtt_config.password)

        client.connect_timeout = self.mqtt_config.connect_timeout_s
        client.reconnect_delay_set(
            min_delay=self.mqtt_config.reconnect_min_delay_s,
            max_delay=self.mqtt_config.reconnect_max_delay_s,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        self._client = client

        logger.info(
            f"Connecting to MQTT broker {address.host}:{address.port} as {self._client_id}"
        )
        try:
            client.connect(address.host, address.port, keepalive=self.mqtt_config.keepalive)
        except (OSError, ValueError) as e:
            self._client = None
            raise BrokerConnectionError(
                f"Cannot reach MQTT broker {address.host}:{address.port}: {e}"
            ) from e

        client.loop_start()

        acknowledged = self._connect_event.wait(timeout=self.mqtt_config.connect_timeout_s)
        if not acknowledged or self._connect_error:
            reason = self._connect_error or (
                f"no acknowledgement within {self.mqtt_config.connect_timeout_s}s"
            )
            client.loop_stop()
            client.disconnect()
            self._client = None
            self._connected = False
            raise BrokerConnectionError(f"MQTT connection failed: {reason}")

        self._start_publish_thread()

    def disconnect(self) -> None:
        """Disconnect from the MQTT broker. Safe to call repeatedly."""
        if not self._running and self._client is None and not self._connected:
            return

        if self._connected:
            self._flush(timeout=1.0)
        self._running = False
        if self._publish_thread:
            self._publish_thread.join(timeout=2)
            self._publish_thread = None

        dropped = self._drain_queue()
        if dropped:
            logger.warning(f"Discarded {dropped} unsent messages on disconnect")

        if self._client and not self._dry_run:
            self._client.loop_stop()
            self._client.disconnect()
        self._client = None

        self._connected = False
        logger.info("Disconnected from MQTT broker")

    def publish(
        self,
        topic: str,
        payload: Dict[str, Any],
        qos: Optional[int] = None,
        retain: bool = False,
        device_id: Optional[str] = None,
    ) -> bool:
        """Queue a message for publishing.

        Never raises. Without a connection the message is dropped and a
        ``PublishFailure`` wrapping ``NotConnectedError`` goes to the failure
        handler.
        """
        if not self._connected:
            self._count_dropped()
            self._report_failure(
                PublishFailure(
                    topic,
                    NotConnectedError("Not connected to MQTT broker"),
                    device_id=device_id,
                )
            )
            return False

        msg = Message(
            topic=topic,
            payload=payload,
            retain=retain,
            qos=self.mqtt_config.qos if qos is None else qos,
            device_id=device_id,
        )
        self._publish_queue.put(msg)
        return True

    def publish_status(self, status: Dict[str, Any]) -> bool:
        """Publish a retained simulator status document."""
        payload = dict(status)
        payload["timestamp_ms"] = int(time.time() * 1000)
        return self.publish(self.status_topic, payload, retain=True)

    def _count_published(self) -> None:
        with self._stats_lock:
            self._messages_published += 1

    def _count_dropped(self, count: int = 1) -> None:
        with self._stats_lock:
            self._messages_dropped += count

    def _report_failure(self, failure: PublishFailure) -> None:
        logger.error(str(failure))
        if self.on_publish_failure:
            try:
                self.on_publish_failure(failure)
            except Exception as e:
                logger.error(f"Publish failure handler raised: {e}")

    def _flush(self, timeout: float) -> None:
        """Give the publish thread a moment to empty the queue."""
        deadline = time.monotonic() + timeout
        while not self._publish_queue.empty() and time.monotonic() < deadline:
            time.sleep(0.05)

    def _drain_queue(self) -> int:
        dropped = 0
        while True:
            try:
                self._publish_queue.get_nowait()
            except Empty:
                break
            dropped += 1
        self._count_dropped(dropped)
        return dropped

    def _start_publish_thread(self) -> None:
        """Start the background publish thread."""
        self._running = True
        self._publish_thread = threading.Thread(
            target=self._publish_loop, name="mqtt-publisher", daemon=True
        )
        self._publish_thread.start()

    def _publish_loop(self) -> None:
        """Background thread that publishes queued messages."""
        while self._running:
            try:
                msg = self._publish_queue.get(timeout=0.1)
            except Empty:
                continue
            self._do_publish(msg)

    def _do_publish(self, msg: Message) -> None:
        """Actually publish a message."""
        payload_str = json.dumps(msg.payload)

        if self._dry_run:
            logger.debug(f"[DRY RUN] {msg.topic}: {payload_str[:100]}")
            self._count_published()
            return

        if not (self._client and self._connected):
            self._count_dropped()
            self._report_failure(
                PublishFailure(
                    msg.topic,
                    NotConnectedError("Connection lost before publish"),
                    device_id=msg.device_id,
                )
            )
            return

        try:
            result = self._client.publish(
                msg.topic, payload_str.encode("utf-8"), qos=msg.qos, retain=msg.retain
            )
        except Exception as e:
            self._count_dropped()
            self._report_failure(PublishFailure(msg.topic, e, device_id=msg.device_id))
            return

        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            self._count_published()
            logger.debug(f"Published to {msg.topic}")
        else:
            self._count_dropped()
            self._report_failure(
                PublishFailure(
                    msg.topic,
                    RuntimeError(mqtt.error_string(result.rc)),
                    device_id=msg.device_id,
                )
            )

    def _on_connect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle connection callback."""
        if rc == 0:
            self._connected = True
            logger.info("Connected to MQTT broker")
            # Resubscribe on every (re)connect since the session is clean
            client.subscribe(self.control_topic, qos=1)
        else:
            self._connect_error = f"broker refused connection ({rc})"
            logger.error(f"Connection failed with code {rc}")
        self._connect_event.set()

    def _on_disconnect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle disconnection callback."""
        self._connected = False
        if rc != 0:
            logger.warning(f"Unexpected disconnection (rc={rc}), reconnecting")

    def _on_message(self, client, userdata, msg) -> None:
        """Handle incoming control commands."""
        if msg.topic != self.control_topic:
            return
        try:
            payload = json.loads(msg.payload.decode())
            command = payload.get("command") if isinstance(payload, dict) else None
        except (UnicodeDecodeError, ValueError) as e:
            logger.error(f"Error processing control message: {e}")
            return

        if not command:
            logger.warning(f"Control message without command: {payload}")
            return
        logger.info(f"Received control command: {command}")
        if self.on_command:
            self.on_command(str(command))
