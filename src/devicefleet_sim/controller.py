"""Simulation controller orchestrating the device fleet.

Lifecycle::

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED

``start()`` needs a connected publisher channel. Each device gets one
immediate reading and then a recurring timer at its own interval. A failure
inside one device's tick is logged and absorbed; it never cancels that
device's timer, touches other devices, or changes the controller state.
"""

import logging
import random
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .devices import DeviceDescriptor, DeviceRegistry
from .errors import NotConnectedError, PublishFailure
from .generators import TelemetryGenerator
from .mqtt_client import PublisherChannel
from .scheduler import DeviceScheduler, RecurringTimer, TimerFactory

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    """Simulation lifecycle states."""

    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


@dataclass
class SimulationStatus:
    """Point-in-time view of a controller."""

    running: bool
    connected: bool
    device_count: int
    active_timers: int
    state: str
    messages_published: int = 0
    messages_dropped: int = 0
    publish_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SimulationController:
    """Runs one simulated fleet over one publisher channel.

    Several controllers can live in the same process; all state is held on
    the instance.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        registry: Optional[DeviceRegistry] = None,
        channel: Optional[PublisherChannel] = None,
        generator: Optional[TelemetryGenerator] = None,
        timer_factory: TimerFactory = RecurringTimer,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or Config.default()
        self._registry = registry if registry is not None else self.config.build_registry()

        if channel:
            self._channel = channel
            # Claim unset callbacks so an injected channel still reports back here
            if getattr(channel, "on_publish_failure", False) is None:
                channel.on_publish_failure = self._on_publish_failure
            if getattr(channel, "on_command", False) is None:
                channel.on_command = self.handle_command
        else:
            self._channel = PublisherChannel(
                self.config.mqtt,
                on_publish_failure=self._on_publish_failure,
                on_command=self.handle_command,
            )

        if generator:
            self._generator = generator
        else:
            self._generator = TelemetryGenerator(random.Random(self.config.simulation.random_seed))

        self._clock = clock
        self._scheduler = DeviceScheduler(self._tick, timer_factory=timer_factory)
        self._state = ControllerState.STOPPED
        self._lock = threading.RLock()
        self._failures: Dict[str, int] = {}
        self._failures_lock = threading.Lock()

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == ControllerState.RUNNING

    @property
    def channel(self) -> PublisherChannel:
        return self._channel

    def devices(self) -> List[DeviceDescriptor]:
        return self._registry.list()

    def failures_for(self, device_id: str) -> int:
        """Number of failed publishes recorded for a device."""
        return self._failures.get(device_id, 0)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def connect(self, dry_run: bool = False) -> None:
        """Connect the publisher channel. ``BrokerConnectionError`` propagates."""
        self._channel.connect(dry_run=dry_run)

    def start(self) -> bool:
        """Start every device timer.

        Returns False (with a warning) if already running.

        Raises:
            NotConnectedError: the channel is not connected; nothing is scheduled.
        """
        with self._lock:
            if self._state == ControllerState.RUNNING:
                logger.warning("Simulation already running")
                return False

            if not self._channel.is_connected():
                raise NotConnectedError("Cannot start simulation: MQTT client not connected")

            self._state = ControllerState.STARTING
            logger.info(f"Starting device simulation for {len(self._registry)} devices")
            try:
                for device in self._registry:
                    self._scheduler.schedule(device)
            except Exception:
                self._scheduler.cancel_all()
                self._state = ControllerState.STOPPED
                raise
            self._state = ControllerState.RUNNING

        self._publish_status()
        return True

    def stop(self) -> bool:
        """Cancel all device timers. Returns False if nothing was running."""
        with self._lock:
            if self._state != ControllerState.RUNNING:
                logger.warning("Simulation not running")
                return False

            self._state = ControllerState.STOPPING
            cancelled = self._scheduler.cancel_all()
            self._state = ControllerState.STOPPED
            logger.info(f"Device simulation stopped ({cancelled} timers cancelled)")

        self._publish_status()
        return True

    def disconnect(self) -> None:
        """Stop if running, then release the broker connection."""
        with self._lock:
            if self._state == ControllerState.RUNNING:
                self.stop()
        self._channel.disconnect()

    def status(self) -> SimulationStatus:
        return SimulationStatus(
            running=self._state == ControllerState.RUNNING,
            connected=bool(self._channel.is_connected()),
            device_count=len(self._registry),
            active_timers=self._scheduler.active_count,
            state=self._state.value,
            messages_published=int(self._channel.messages_published),
            messages_dropped=int(self._channel.messages_dropped),
            publish_failures=sum(self._failures.values()),
        )

    def handle_command(self, command: str) -> None:
        """Apply a remote control command (``start`` or ``stop``)."""
        command = command.strip().lower()
        if command == "start":
            try:
                self.start()
            except NotConnectedError as e:
                logger.error(str(e))
        elif command == "stop":
            self.stop()
        else:
            logger.warning(f"Unknown control command: {command}")

    # =========================================================================
    # Ticks
    # =========================================================================

    def _tick(self, device: DeviceDescriptor) -> None:
        """Generate one reading for ``device`` and hand it to the channel."""
        try:
            message = self._generator.generate(device, self._clock())
            self._channel.publish(device.topic, message.to_dict(), device_id=device.id)
        except Exception as e:
            self._record_failure(device.id)
            logger.error(f"Telemetry tick failed for {device.id}: {e}")

    def _on_publish_failure(self, failure: PublishFailure) -> None:
        if failure.device_id:
            self._record_failure(failure.device_id)

    def _record_failure(self, device_id: str) -> None:
        with self._failures_lock:
            self._failures[device_id] = self._failures.get(device_id, 0) + 1

    def _publish_status(self) -> None:
        if self._channel.is_connected():
            self._channel.publish_status(self.status().to_dict())
