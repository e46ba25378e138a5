"""Device registry: the static descriptors of every simulated device.

A descriptor identifies one device, where it sits, how often it reports and
which topic it reports to. Descriptors are immutable once created; the
registry is an ordered, id-unique collection of them.
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from faker import Faker

logger = logging.getLogger(__name__)


class DeviceType(str, Enum):
    """Kinds of device the telemetry generator knows how to model."""

    AIR_QUALITY = "AIR_QUALITY"
    ENERGY_METER = "ENERGY_METER"
    SOLAR_PANEL = "SOLAR_PANEL"
    WEATHER_STATION = "WEATHER_STATION"
    WATER_SENSOR = "WATER_SENSOR"

    @classmethod
    def parse(cls, value: Union[str, "DeviceType"]) -> Union["DeviceType", str]:
        """Return the matching member, or the raw string for unknown types."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            logger.warning(f"Unknown device type '{value}' - generic telemetry will be used")
            return str(value)


@dataclass(frozen=True)
class Location:
    """Geolocation of a device. Informational only."""

    latitude: float
    longitude: float
    description: str = ""


@dataclass(frozen=True)
class DeviceDescriptor:
    """Configuration record of one simulated device."""

    id: str
    name: str
    device_type: Union[DeviceType, str]
    location: Location
    publish_interval_ms: int
    topic: str

    def __post_init__(self):
        if not self.id:
            raise ValueError("Device id must not be empty")
        if int(self.publish_interval_ms) <= 0:
            raise ValueError(
                f"Device {self.id}: publish interval must be positive, got {self.publish_interval_ms}"
            )

    @property
    def publish_interval_s(self) -> float:
        return self.publish_interval_ms / 1000.0

    @property
    def type_name(self) -> str:
        if isinstance(self.device_type, DeviceType):
            return self.device_type.value
        return str(self.device_type)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceDescriptor":
        """Build a descriptor from a config mapping.

        Accepts both snake_case keys and the camelCase keys used by the
        web application's device table (``telemetryInterval``, ``mqttTopic``).
        """
        loc = data.get("location") or {}
        interval = data.get("publish_interval_ms", data.get("telemetryInterval"))
        topic = data.get("topic", data.get("mqttTopic"))
        if interval is None or topic is None:
            raise ValueError(f"Device {data.get('id')!r} needs an interval and a topic")

        return cls(
            id=str(data["id"]),
            name=data.get("name", data["id"]),
            device_type=DeviceType.parse(data.get("type", data.get("device_type", ""))),
            location=Location(
                latitude=float(loc.get("latitude", 0.0)),
                longitude=float(loc.get("longitude", 0.0)),
                description=loc.get("description", ""),
            ),
            publish_interval_ms=int(interval),
            topic=topic,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type_name,
            "location": {
                "latitude": self.location.latitude,
                "longitude": self.location.longitude,
                "description": self.location.description,
            },
            "publish_interval_ms": self.publish_interval_ms,
            "topic": self.topic,
        }


# Default fleet for the Damday village microgrid
SAMPLE_DEVICES: List[DeviceDescriptor] = [
    DeviceDescriptor(
        id="air-quality-001",
        name="Village Center Air Quality Monitor",
        device_type=DeviceType.AIR_QUALITY,
        location=Location(29.5456, 80.0964, "Village Center, Damday"),
        publish_interval_ms=30000,
        topic="damday/sensors/air-quality",
    ),
    DeviceDescriptor(
        id="energy-meter-001",
        name="Solar Microgrid Main Meter",
        device_type=DeviceType.ENERGY_METER,
        location=Location(29.5460, 80.0970, "Solar Array, Damday"),
        publish_interval_ms=10000,
        topic="damday/sensors/energy",
    ),
    DeviceDescriptor(
        id="solar-panel-001",
        name="Community Hall Rooftop Array",
        device_type=DeviceType.SOLAR_PANEL,
        location=Location(29.5458, 80.0972, "Community Hall, Damday"),
        publish_interval_ms=15000,
        topic="damday/sensors/solar",
    ),
    DeviceDescriptor(
        id="weather-001",
        name="Village Weather Station",
        device_type=DeviceType.WEATHER_STATION,
        location=Location(29.5450, 80.0960, "Weather Station, Damday"),
        publish_interval_ms=60000,
        topic="damday/sensors/weather",
    ),
    DeviceDescriptor(
        id="water-001",
        name="Spring Tank Water Sensor",
        device_type=DeviceType.WATER_SENSOR,
        location=Location(29.5448, 80.0955, "Spring Tank, Damday"),
        publish_interval_ms=20000,
        topic="damday/sensors/water",
    ),
]

# Topic segment and label per type, used for synthetic devices
_TYPE_LABELS: Dict[DeviceType, Tuple[str, str]] = {
    DeviceType.AIR_QUALITY: ("air-quality", "Air Quality Monitor"),
    DeviceType.ENERGY_METER: ("energy", "Energy Meter"),
    DeviceType.SOLAR_PANEL: ("solar", "Solar Array"),
    DeviceType.WEATHER_STATION: ("weather", "Weather Station"),
    DeviceType.WATER_SENSOR: ("water", "Water Sensor"),
}


class DeviceRegistry:
    """Ordered collection of device descriptors, unique by id."""

    def __init__(self, devices: Optional[Iterable[DeviceDescriptor]] = None):
        self._devices = {}
        for device in SAMPLE_DEVICES if devices is None else devices:
            self.add(device)

    def add(self, device: DeviceDescriptor) -> None:
        if device.id in self._devices:
            raise ValueError(f"Duplicate device id: {device.id}")
        self._devices[device.id] = device

    def get(self, device_id: str) -> DeviceDescriptor:
        return self._devices[device_id]

    def list(self) -> List[DeviceDescriptor]:
        return list(self._devices.values())

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[DeviceDescriptor]:
        return iter(list(self._devices.values()))

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    @classmethod
    def from_dicts(cls, items: Iterable[Dict[str, Any]]) -> "DeviceRegistry":
        return cls(DeviceDescriptor.from_dict(item) for item in items)

    @staticmethod
    def synthetic(
        count: int,
        center: Tuple[float, float] = (29.5456, 80.0964),
        seed: Optional[int] = None,
        topic_prefix: str = "damday/sensors",
        interval_range_ms: Tuple[int, int] = (5000, 60000),
    ) -> List[DeviceDescriptor]:
        """Create ``count`` random descriptors scattered around ``center``.

        Names and location labels come from Faker; types, intervals and
        coordinate offsets from a seeded RNG so the same seed gives the
        same fleet.
        """
        rng = random.Random(seed)
        fake = Faker()
        if seed is not None:
            fake.seed_instance(seed)

        types = list(DeviceType)
        devices = []
        for i in range(1, count + 1):
            device_type = rng.choice(types)
            segment, label = _TYPE_LABELS[device_type]
            street = fake.street_name()
            devices.append(
                DeviceDescriptor(
                    id=f"sim-{segment}-{i:03d}",
                    name=f"{street} {label}",
                    device_type=device_type,
                    location=Location(
                        latitude=round(center[0] + rng.uniform(-0.01, 0.01), 6),
                        longitude=round(center[1] + rng.uniform(-0.01, 0.01), 6),
                        description=f"{street}, {fake.city()}",
                    ),
                    publish_interval_ms=rng.randrange(
                        interval_range_ms[0], interval_range_ms[1] + 1, 1000
                    ),
                    topic=f"{topic_prefix}/{segment}",
                )
            )
        return devices
