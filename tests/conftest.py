"""Shared test doubles: a capturing channel and a virtual clock for timers."""

import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pytest

from devicefleet_sim.devices import DeviceDescriptor, DeviceRegistry, DeviceType, Location


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeChannel:
    """Publisher channel double that captures every publish call."""

    def __init__(self, connected: bool = True):
        self._connected = connected
        self.published: List[Dict[str, Any]] = []
        self.statuses: List[Dict[str, Any]] = []
        self.messages_dropped = 0
        self.disconnect_calls = 0
        # Return True to make a publish raise
        self.fail: Optional[Callable[[str, Optional[str]], bool]] = None

    @property
    def messages_published(self) -> int:
        return len(self.published)

    def connect(self, dry_run: bool = False) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def publish(self, topic, payload, qos=None, retain=False, device_id=None) -> bool:
        if self.fail and self.fail(topic, device_id):
            self.messages_dropped += 1
            raise RuntimeError("broker rejected message")
        self.published.append(
            {"topic": topic, "payload": payload, "device_id": device_id, "retain": retain}
        )
        return True

    def publish_status(self, status: Dict[str, Any]) -> bool:
        self.statuses.append(status)
        return True

    def for_device(self, device_id: str) -> List[Dict[str, Any]]:
        return [m for m in self.published if m["device_id"] == device_id]


class VirtualTimer:
    def __init__(self, clock: "VirtualClock", interval_s: float, function, name: str):
        self.clock = clock
        self.interval_s = interval_s
        self.function = function
        self.name = name
        self.active = False
        self.next_due = 0.0

    def start(self) -> None:
        self.active = True
        self.next_due = self.clock.elapsed + self.interval_s
        self.clock.timers.append(self)

    def cancel(self) -> None:
        self.active = False


class VirtualClock:
    """Drives VirtualTimers deterministically as simulated time advances."""

    def __init__(self, start: datetime = datetime(2026, 6, 1, 12, 0, 0)):
        self.start = start
        self.elapsed = 0.0
        self.timers: List[VirtualTimer] = []

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def timer_factory(self, interval_s: float, function, name: str) -> VirtualTimer:
        return VirtualTimer(self, interval_s, function, name)

    @property
    def active_timers(self) -> List[VirtualTimer]:
        return [t for t in self.timers if t.active]

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while True:
            due = [t for t in self.active_timers if t.next_due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.next_due)
            self.elapsed = timer.next_due
            timer.next_due += timer.interval_s
            timer.function()
        self.elapsed = target


def make_device(
    device_id: str,
    device_type=DeviceType.AIR_QUALITY,
    interval_ms: int = 1000,
    topic: Optional[str] = None,
) -> DeviceDescriptor:
    return DeviceDescriptor(
        id=device_id,
        name=f"Test {device_id}",
        device_type=device_type,
        location=Location(29.5, 80.1, "Test site"),
        publish_interval_ms=interval_ms,
        topic=topic or f"test/{device_id}",
    )


@pytest.fixture
def fake_channel():
    return FakeChannel()


@pytest.fixture
def virtual_clock():
    return VirtualClock()


@pytest.fixture
def three_device_registry():
    return DeviceRegistry(
        [
            make_device("dev-1", DeviceType.AIR_QUALITY, 1000),
            make_device("dev-2", DeviceType.ENERGY_METER, 2000),
            make_device("dev-3", DeviceType.SOLAR_PANEL, 5000),
        ]
    )
