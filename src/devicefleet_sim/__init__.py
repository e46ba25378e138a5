"""Device Fleet Simulator - synthetic IoT telemetry published over MQTT."""

__version__ = "0.1.0"

from .config import Config
from .controller import SimulationController, SimulationStatus
from .devices import SAMPLE_DEVICES, DeviceDescriptor, DeviceRegistry, DeviceType, Location
from .generators import TelemetryGenerator, TelemetryMessage, generate

__all__ = [
    "Config",
    "DeviceDescriptor",
    "DeviceRegistry",
    "DeviceType",
    "Location",
    "SAMPLE_DEVICES",
    "SimulationController",
    "SimulationStatus",
    "TelemetryGenerator",
    "TelemetryMessage",
    "generate",
    "__version__",
]
