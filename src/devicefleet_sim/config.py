"""Configuration management for the simulator."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .devices import SAMPLE_DEVICES, DeviceDescriptor, DeviceRegistry


@dataclass
class MQTTConfig:
    """MQTT broker configuration."""

    broker_url: str = "mqtt://localhost:1883"
    username: str = ""
    password: str = ""
    client_id_prefix: str = "device-simulator"
    qos: int = 1
    keepalive: int = 60
    connect_timeout_s: float = 4.0
    reconnect_min_delay_s: int = 1
    reconnect_max_delay_s: int = 30
    control_root: str = "devicefleet-sim"


@dataclass
class SimulationConfig:
    """Simulation parameters."""

    random_seed: Optional[int] = None
    status_interval_s: int = 30  # How often the CLI logs fleet status
    extra_devices: int = 0  # Synthetic devices added on top of the registry


@dataclass
class Config:
    """Main configuration container."""

    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    devices: List[DeviceDescriptor] = field(default_factory=list)

    def build_registry(self) -> DeviceRegistry:
        """Registry of the configured devices plus any synthetic extras."""
        registry = DeviceRegistry(self.devices)
        if self.simulation.extra_devices > 0:
            for device in DeviceRegistry.synthetic(
                self.simulation.extra_devices, seed=self.simulation.random_seed
            ):
                registry.add(device)
        return registry

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not config_path.exists():
            return cls.default()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def from_env(cls, config: Optional["Config"] = None) -> "Config":
        """Apply environment variable overrides (to defaults if no config given)."""
        config = config or cls.default()

        config.mqtt.broker_url = os.getenv("MQTT_BROKER_URL", config.mqtt.broker_url)
        config.mqtt.username = os.getenv("MQTT_USERNAME", config.mqtt.username)
        config.mqtt.password = os.getenv("MQTT_PASSWORD", config.mqtt.password)

        seed = os.getenv("SIMULATION_SEED")
        if seed:
            config.simulation.random_seed = int(seed)

        return config

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration with the sample device fleet."""
        return cls(devices=list(SAMPLE_DEVICES))

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        config = cls.default()

        # MQTT config
        if "mqtt" in data:
            mqtt_data = data["mqtt"] or {}
            defaults = config.mqtt
            config.mqtt = MQTTConfig(
                broker_url=mqtt_data.get("broker_url", defaults.broker_url),
                username=mqtt_data.get("username", defaults.username),
                password=mqtt_data.get("password", defaults.password),
                client_id_prefix=mqtt_data.get("client_id_prefix", defaults.client_id_prefix),
                qos=mqtt_data.get("qos", defaults.qos),
                keepalive=mqtt_data.get("keepalive", defaults.keepalive),
                connect_timeout_s=mqtt_data.get("connect_timeout_s", defaults.connect_timeout_s),
                reconnect_min_delay_s=mqtt_data.get(
                    "reconnect_min_delay_s", defaults.reconnect_min_delay_s
                ),
                reconnect_max_delay_s=mqtt_data.get(
                    "reconnect_max_delay_s", defaults.reconnect_max_delay_s
                ),
                control_root=mqtt_data.get("control_root", defaults.control_root),
            )

        # Simulation config
        if "simulation" in data:
            sim_data = data["simulation"] or {}
            config.simulation = SimulationConfig(
                random_seed=sim_data.get("random_seed"),
                status_interval_s=sim_data.get(
                    "status_interval_s", config.simulation.status_interval_s
                ),
                extra_devices=sim_data.get("extra_devices", config.simulation.extra_devices),
            )

        # Devices replace the sample fleet
        if "devices" in data:
            config.devices = [DeviceDescriptor.from_dict(d) for d in data["devices"] or []]

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        data = {
            "mqtt": {
                "broker_url": self.mqtt.broker_url,
                "username": self.mqtt.username,
                "password": self.mqtt.password,
                "client_id_prefix": self.mqtt.client_id_prefix,
                "qos": self.mqtt.qos,
                "keepalive": self.mqtt.keepalive,
                "connect_timeout_s": self.mqtt.connect_timeout_s,
                "reconnect_min_delay_s": self.mqtt.reconnect_min_delay_s,
                "reconnect_max_delay_s": self.mqtt.reconnect_max_delay_s,
                "control_root": self.mqtt.control_root,
            },
            "simulation": {
                "random_seed": self.simulation.random_seed,
                "status_interval_s": self.simulation.status_interval_s,
                "extra_devices": self.simulation.extra_devices,
            },
            "devices": [d.to_dict() for d in self.devices],
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
