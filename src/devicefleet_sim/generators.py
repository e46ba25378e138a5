"""Telemetry generators for the simulated device fleet.

Every device type has a fixed metric schema and a plausible range per metric:

- **AIR_QUALITY**: particulates, CO2, humidity, temperature, AQI
- **ENERGY_METER**: mains voltage/current/power, cumulative energy, frequency
- **SOLAR_PANEL**: output following a diurnal irradiance curve
- **WEATHER_STATION**: temperature, humidity, pressure, wind, rain, UV
- **WATER_SENSOR**: flow, pH, TDS, turbidity, temperature, tank level

Unknown types fall back to a generic ``{value, status}`` reading. Values are
random, so consumers (and tests) can rely on the schema and ranges but not
on exact numbers. All numbers are rounded to two decimals.
"""

import json
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .devices import DeviceDescriptor, DeviceType

Range = Tuple[float, float]


# =============================================================================
# Metric schemas
# =============================================================================

METRIC_RANGES: Dict[DeviceType, Dict[str, Range]] = {
    DeviceType.AIR_QUALITY: {
        "pm25": (10.0, 60.0),  # µg/m³
        "pm10": (20.0, 100.0),  # µg/m³
        "co2": (400.0, 600.0),  # ppm
        "humidity": (30.0, 70.0),  # %
        "temperature": (10.0, 25.0),  # °C
        "aqi": (50.0, 150.0),
    },
    DeviceType.ENERGY_METER: {
        "voltage": (220.0, 240.0),  # V
        "current": (5.0, 15.0),  # A
        "power": (1000.0, 3000.0),  # W
        "energy": (500.0, 600.0),  # kWh
        "frequency": (49.0, 51.0),  # Hz
        "powerFactor": (0.8, 1.0),
    },
    DeviceType.SOLAR_PANEL: {
        "power": (0.0, 1000.0),  # W, scaled by daylight
        "voltage": (200.0, 250.0),  # V
        "current": (0.0, 5.0),  # A, scaled by daylight
        "irradiance": (0.0, 1000.0),  # W/m², scaled by daylight
        "panelTemp": (25.0, 45.0),  # °C
        "efficiency": (15.0, 20.0),  # %
    },
    DeviceType.WEATHER_STATION: {
        "temperature": (10.0, 25.0),  # °C
        "humidity": (40.0, 80.0),  # %
        "pressure": (1000.0, 1050.0),  # hPa
        "windSpeed": (2.0, 22.0),  # m/s
        "windDirection": (0.0, 360.0),  # degrees, 360 wraps to 0
        "rainfall": (0.0, 5.0),  # mm
        "uvIndex": (0.0, 10.0),
    },
    DeviceType.WATER_SENSOR: {
        "flow": (10.0, 60.0),  # L/min
        "ph": (6.5, 8.5),
        "tds": (100.0, 300.0),  # ppm
        "turbidity": (0.0, 5.0),  # NTU
        "temperature": (15.0, 25.0),  # °C
        "level": (50.0, 150.0),  # %
    },
}

GENERIC_VALUE_RANGE: Range = (0.0, 100.0)

# Solar metrics that follow the daylight curve
SOLAR_SCALED_METRICS = ("power", "current", "irradiance")
# Cloud/soiling noise applied on top of the daylight curve
SOLAR_NOISE_RANGE: Range = (0.8, 1.0)

DAYLIGHT_START_HOUR = 6.0
DAYLIGHT_END_HOUR = 18.0


def solar_multiplier(hour: float) -> float:
    """Half-sine daylight curve: 0 outside 06:00-18:00, 1.0 at noon.

    The cutoff at sunrise/sunset is hard; there is no dusk/dawn smoothing.
    """
    if hour < DAYLIGHT_START_HOUR or hour >= DAYLIGHT_END_HOUR:
        return 0.0
    span = DAYLIGHT_END_HOUR - DAYLIGHT_START_HOUR
    return math.sin((hour - DAYLIGHT_START_HOUR) * math.pi / span)


def _hour_of_day(now: datetime) -> float:
    return now.hour + now.minute / 60 + now.second / 3600


def _iso_timestamp(now: datetime) -> str:
    # Naive datetimes are taken as local time
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds")


# =============================================================================
# Telemetry message
# =============================================================================


@dataclass
class TelemetryMessage:
    """One reading of one device, built fresh on every tick."""

    device_id: str
    timestamp: str
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation."""
        return {
            "deviceId": self.device_id,
            "timestamp": self.timestamp,
            "metrics": dict(self.metrics),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TelemetryMessage":
        return cls(
            device_id=data["deviceId"],
            timestamp=data["timestamp"],
            metrics=dict(data.get("metrics", {})),
        )


# =============================================================================
# Generator
# =============================================================================


class TelemetryGenerator:
    """Maps a device descriptor and a point in time to a telemetry message.

    Pass a seeded ``random.Random`` for reproducible output.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate(self, device: DeviceDescriptor, now: Optional[datetime] = None) -> TelemetryMessage:
        """Generate a telemetry message for ``device`` at ``now``."""
        now = now or datetime.now()
        return TelemetryMessage(
            device_id=device.id,
            timestamp=_iso_timestamp(now),
            metrics=self.generate_metrics(device.device_type, now),
        )

    def generate_metrics(self, device_type: Any, now: datetime) -> Dict[str, Any]:
        """Metrics payload for ``device_type``; unknown types get the generic one."""
        if device_type == DeviceType.SOLAR_PANEL:
            return self._solar_metrics(_hour_of_day(now))

        ranges = METRIC_RANGES.get(device_type)
        if ranges is None:
            return {
                "value": self._uniform(GENERIC_VALUE_RANGE),
                "status": "active",
            }

        metrics = {name: self._uniform(bounds) for name, bounds in ranges.items()}
        if "windDirection" in metrics:
            metrics["windDirection"] = round(metrics["windDirection"] % 360.0, 2)
        return metrics

    def _solar_metrics(self, hour: float) -> Dict[str, Any]:
        ranges = METRIC_RANGES[DeviceType.SOLAR_PANEL]
        daylight = solar_multiplier(hour)

        metrics = {}
        for name, bounds in ranges.items():
            if name in SOLAR_SCALED_METRICS:
                noise = self.rng.uniform(*SOLAR_NOISE_RANGE)
                metrics[name] = round(bounds[1] * daylight * noise, 2)
            else:
                metrics[name] = self._uniform(bounds)
        return metrics

    def _uniform(self, bounds: Range) -> float:
        return round(self.rng.uniform(bounds[0], bounds[1]), 2)


_default_generator = TelemetryGenerator()


def generate(device: DeviceDescriptor, now: Optional[datetime] = None) -> TelemetryMessage:
    """Generate a telemetry message using the shared default generator."""
    return _default_generator.generate(device, now)
