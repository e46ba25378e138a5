"""Tests for device descriptors and the registry."""

import dataclasses

import pytest

from conftest import make_device
from devicefleet_sim.devices import (
    SAMPLE_DEVICES,
    DeviceDescriptor,
    DeviceRegistry,
    DeviceType,
)


class TestDeviceDescriptor:
    """Tests for DeviceDescriptor."""

    def test_is_immutable(self):
        device = make_device("aq-1")
        with pytest.raises(dataclasses.FrozenInstanceError):
            device.topic = "elsewhere"

    @pytest.mark.parametrize("interval", [0, -1000])
    def test_rejects_non_positive_interval(self, interval):
        with pytest.raises(ValueError):
            make_device("aq-1", interval_ms=interval)

    def test_interval_in_seconds(self):
        assert make_device("aq-1", interval_ms=2500).publish_interval_s == 2.5

    def test_from_dict_accepts_web_app_keys(self):
        device = DeviceDescriptor.from_dict(
            {
                "id": "air-quality-002",
                "name": "School Monitor",
                "type": "AIR_QUALITY",
                "location": {"latitude": 29.5, "longitude": 80.1, "description": "School"},
                "telemetryInterval": 30000,
                "mqttTopic": "damday/sensors/air-quality",
            }
        )

        assert device.device_type is DeviceType.AIR_QUALITY
        assert device.publish_interval_ms == 30000
        assert device.topic == "damday/sensors/air-quality"
        assert device.location.description == "School"

    def test_from_dict_keeps_unknown_type(self):
        device = DeviceDescriptor.from_dict(
            {"id": "x", "type": "GEIGER_COUNTER", "publish_interval_ms": 1000, "topic": "t"}
        )

        assert device.device_type == "GEIGER_COUNTER"
        assert device.type_name == "GEIGER_COUNTER"

    def test_from_dict_requires_topic(self):
        with pytest.raises(ValueError):
            DeviceDescriptor.from_dict({"id": "x", "type": "AIR_QUALITY", "publish_interval_ms": 1000})

    def test_dict_round_trip(self):
        device = SAMPLE_DEVICES[0]
        assert DeviceDescriptor.from_dict(device.to_dict()) == device


class TestDeviceRegistry:
    """Tests for DeviceRegistry."""

    def test_defaults_to_sample_fleet(self):
        registry = DeviceRegistry()

        assert len(registry) == len(SAMPLE_DEVICES)
        assert {d.device_type for d in registry} == set(DeviceType)

    def test_preserves_order(self):
        devices = [make_device("b"), make_device("a"), make_device("c")]
        assert [d.id for d in DeviceRegistry(devices).list()] == ["b", "a", "c"]

    def test_rejects_duplicate_ids(self):
        with pytest.raises(ValueError):
            DeviceRegistry([make_device("a"), make_device("a")])

    def test_get(self):
        registry = DeviceRegistry([make_device("a")])

        assert registry.get("a").id == "a"
        assert "a" in registry
        with pytest.raises(KeyError):
            registry.get("missing")

    def test_empty_registry(self):
        assert len(DeviceRegistry([])) == 0


class TestSyntheticDevices:
    """Tests for Faker-backed synthetic fleets."""

    def test_count_and_unique_ids(self):
        devices = DeviceRegistry.synthetic(25, seed=1)

        assert len(devices) == 25
        assert len({d.id for d in devices}) == 25

    def test_same_seed_same_fleet(self):
        assert DeviceRegistry.synthetic(5, seed=42) == DeviceRegistry.synthetic(5, seed=42)

    def test_located_near_center(self):
        for device in DeviceRegistry.synthetic(10, center=(10.0, 20.0), seed=3):
            assert abs(device.location.latitude - 10.0) <= 0.01
            assert abs(device.location.longitude - 20.0) <= 0.01
            assert 5000 <= device.publish_interval_ms <= 60000
            assert isinstance(device.device_type, DeviceType)
