"""Tests for telemetry generators."""

import json
import random
from datetime import datetime, timezone

import pytest

from conftest import make_device
from devicefleet_sim.devices import DeviceType
from devicefleet_sim.generators import (
    GENERIC_VALUE_RANGE,
    METRIC_RANGES,
    SOLAR_SCALED_METRICS,
    TelemetryGenerator,
    TelemetryMessage,
    generate,
    solar_multiplier,
)

RUNS = 1000
NOON = datetime(2026, 6, 1, 12, 0, 0)
MIDNIGHT = datetime(2026, 6, 1, 0, 0, 0)


def has_two_decimals(value: float) -> bool:
    return round(value, 2) == value


class TestMetricSchemas:
    """Key sets and ranges for every device type."""

    @pytest.fixture
    def generator(self):
        return TelemetryGenerator(random.Random(42))

    @pytest.mark.parametrize("device_type", list(DeviceType))
    def test_schema_and_ranges(self, generator, device_type):
        device = make_device("dev", device_type)
        ranges = METRIC_RANGES[device_type]
        rng = random.Random(device_type.value)

        for _ in range(RUNS):
            # Spread readings over the whole day so solar covers night and day
            now = NOON.replace(hour=rng.randrange(24), minute=rng.randrange(60))
            metrics = generator.generate(device, now).metrics

            assert set(metrics) == set(ranges)
            for name, value in metrics.items():
                low, high = ranges[name]
                assert low <= value <= high, f"{name}={value} outside [{low}, {high}]"
                assert has_two_decimals(value)

    def test_wind_direction_below_360(self, generator):
        device = make_device("wx", DeviceType.WEATHER_STATION)
        for _ in range(RUNS):
            assert generator.generate(device, NOON).metrics["windDirection"] < 360.0

    def test_unknown_type_falls_back_to_generic(self, generator):
        device = make_device("mystery", "SEISMOGRAPH")
        for _ in range(100):
            metrics = generator.generate(device, NOON).metrics

            assert set(metrics) == {"value", "status"}
            assert metrics["status"] == "active"
            assert GENERIC_VALUE_RANGE[0] <= metrics["value"] <= GENERIC_VALUE_RANGE[1]

    def test_raw_type_string_matches_enum(self, generator):
        device = make_device("aq", "AIR_QUALITY")
        metrics = generator.generate(device, NOON).metrics
        assert set(metrics) == set(METRIC_RANGES[DeviceType.AIR_QUALITY])


class TestSolarCurve:
    """Tests for the diurnal irradiance curve."""

    def test_zero_outside_daylight(self):
        for hour in (0, 3, 5.99, 18, 21, 23.5):
            assert solar_multiplier(hour) == 0.0

    def test_peaks_at_noon(self):
        assert solar_multiplier(12) == pytest.approx(1.0)
        assert solar_multiplier(9) == pytest.approx(solar_multiplier(15))
        assert 0.0 < solar_multiplier(7) < solar_multiplier(10) < solar_multiplier(12)

    def test_midnight_output_is_zero(self):
        gen = TelemetryGenerator(random.Random(1))
        device = make_device("pv", DeviceType.SOLAR_PANEL)

        for _ in range(RUNS):
            metrics = gen.generate(device, MIDNIGHT).metrics
            for name in SOLAR_SCALED_METRICS:
                assert metrics[name] <= 0.01

    def test_noon_is_maximum_for_same_seed(self):
        device = make_device("pv", DeviceType.SOLAR_PANEL)
        noon_power = TelemetryGenerator(random.Random(7)).generate(device, NOON).metrics["power"]

        for hour in range(24):
            now = NOON.replace(hour=hour)
            power = TelemetryGenerator(random.Random(7)).generate(device, now).metrics["power"]
            assert power <= noon_power
            if hour < 6 or hour >= 18:
                assert power == 0.0

    def test_independent_metrics_ignore_curve(self):
        gen = TelemetryGenerator(random.Random(3))
        device = make_device("pv", DeviceType.SOLAR_PANEL)

        metrics = gen.generate(device, MIDNIGHT).metrics
        assert metrics["voltage"] >= 200.0
        assert metrics["panelTemp"] >= 25.0
        assert metrics["efficiency"] >= 15.0


class TestTelemetryMessage:
    """Tests for the message envelope."""

    def test_seeded_generators_replay(self):
        device = make_device("em", DeviceType.ENERGY_METER)
        first = TelemetryGenerator(random.Random(99)).generate(device, NOON)
        second = TelemetryGenerator(random.Random(99)).generate(device, NOON)

        assert first == second

    def test_wire_keys(self):
        msg = generate(make_device("aq-1"), NOON)
        data = msg.to_dict()

        assert set(data) == {"deviceId", "timestamp", "metrics"}
        assert data["deviceId"] == "aq-1"

    def test_json_round_trip(self):
        device = make_device("water-7", DeviceType.WATER_SENSOR)
        now = datetime(2026, 3, 14, 15, 9, 26, tzinfo=timezone.utc)

        text = generate(device, now).to_json()
        decoded = json.loads(text)

        assert decoded["deviceId"] == device.id
        assert datetime.fromisoformat(decoded["timestamp"]) == now
        assert TelemetryMessage.from_dict(decoded).metrics == decoded["metrics"]

    def test_timestamp_is_utc(self):
        msg = generate(make_device("aq-1"), NOON)
        parsed = datetime.fromisoformat(msg.timestamp)

        assert parsed.utcoffset().total_seconds() == 0

    def test_defaults_to_current_time(self):
        before = datetime.now(timezone.utc).replace(microsecond=0)
        msg = generate(make_device("aq-1"))

        assert datetime.fromisoformat(msg.timestamp) >= before
