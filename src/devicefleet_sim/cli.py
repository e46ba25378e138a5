"""Command-line interface for the device fleet simulator."""

import json
import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

import click
import paho.mqtt.client as mqtt

from . import __version__
from .config import Config
from .controller import SimulationController
from .devices import DeviceDescriptor
from .errors import BrokerConnectionError, NotConnectedError
from .mqtt_client import parse_broker_url

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")


def _load_config(config_path: Optional[Path], broker_url: Optional[str] = None) -> Config:
    """Config file, then environment, then command-line overrides."""
    config = Config.from_yaml(config_path or DEFAULT_CONFIG_PATH)
    config = Config.from_env(config)
    if broker_url:
        config.mqtt.broker_url = broker_url
    return config


def _echo_devices(devices: List[DeviceDescriptor]) -> None:
    click.echo("ID | Name | Type | Interval | Topic | Location")
    click.echo("---|------|------|----------|-------|---------")
    for d in devices:
        click.echo(
            f"{d.id} | {d.name} | {d.type_name} | {d.publish_interval_ms}ms | "
            f"{d.topic} | {d.location.description}"
        )


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx):
    """Device fleet simulator - synthetic IoT telemetry over MQTT.

    Simulates air-quality monitors, energy meters, solar panels, weather
    stations and water sensors, each publishing JSON readings to its own
    topic at its own interval.

    \b
    Environment Variables:
      MQTT_BROKER_URL    MQTT broker URL (default: mqtt://localhost:1883)
      MQTT_USERNAME      Broker username
      MQTT_PASSWORD      Broker password
      SIMULATION_SEED    Random seed for reproducible telemetry
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(start)


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help=f"YAML config file (default: {DEFAULT_CONFIG_PATH})",
)
@click.option("--broker-url", "-b", default=None, help="MQTT broker URL")
@click.option("--dry-run", is_flag=True, default=False, help="Log messages instead of publishing")
@click.option(
    "--extra-devices",
    "-n",
    type=click.IntRange(0),
    default=None,
    help="Add N synthetic devices to the fleet",
)
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option(
    "--duration",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Stop after this many seconds (default: run until Ctrl+C)",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log every publish")
def start(config_path, broker_url, dry_run, extra_devices, seed, duration, verbose):
    """Start the device simulation (default command)."""
    if verbose:
        logging.getLogger("devicefleet_sim").setLevel(logging.DEBUG)

    config = _load_config(config_path, broker_url)
    if extra_devices is not None:
        config.simulation.extra_devices = extra_devices
    if seed is not None:
        config.simulation.random_seed = seed

    controller = SimulationController(config)

    click.echo(f"Connecting to MQTT broker {config.mqtt.broker_url}...")
    try:
        controller.connect(dry_run=dry_run)
    except BrokerConnectionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("Available devices:")
    for d in controller.devices():
        click.echo(f"  - {d.name} ({d.type_name}) at {d.location.description}")
    click.echo()

    stop_event = threading.Event()

    def signal_handler(sig, frame):
        logger.info("Shutting down device simulator...")
        stop_event.set()

    previous_handlers = {
        sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }

    status_interval = config.simulation.status_interval_s
    try:
        try:
            controller.start()
        except NotConnectedError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo("Device simulation started. Press Ctrl+C to stop.")

        started = time.monotonic()
        last_status = started
        while not stop_event.wait(0.2):
            now = time.monotonic()
            status = controller.status()
            if not status.running:
                logger.info("Simulation stopped by control command")
                break
            if duration is not None and now - started >= duration:
                break
            if now - last_status >= status_interval:
                logger.info(
                    f"Simulation active - {status.device_count} devices, "
                    f"{status.messages_published} published, {status.messages_dropped} dropped"
                )
                last_status = now
    finally:
        controller.disconnect()
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    status = controller.status()
    click.echo(
        f"Device simulation stopped ({status.messages_published} published, "
        f"{status.messages_dropped} dropped)"
    )


@main.command()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), default=None)
@click.option("--broker-url", "-b", default=None, help="MQTT broker URL")
def stop(config_path, broker_url):
    """Stop a running simulation via its MQTT control topic."""
    config = _load_config(config_path, broker_url)
    topic = f"{config.mqtt.control_root}/control"
    payload = json.dumps({"command": "stop"})

    try:
        address = parse_broker_url(config.mqtt.broker_url)
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            transport=address.transport,
        )
        if address.tls:
            client.tls_set()
        if config.mqtt.username:
            client.username_pw_set(config.mqtt.username, config.mqtt.password)
        client.connect(address.host, address.port)
        client.loop_start()
        result = client.publish(topic, payload, qos=1)
        result.wait_for_publish(timeout=config.mqtt.connect_timeout_s)
        client.disconnect()
        client.loop_stop()

        click.echo("Stop command sent")
        click.echo(f"  Topic: {topic}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("list")
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), default=None)
@click.option("--extra-devices", "-n", type=click.IntRange(0), default=None)
@click.option("--seed", type=int, default=None)
def list_devices(config_path, extra_devices, seed):
    """List the simulated devices."""
    config = _load_config(config_path)
    if extra_devices is not None:
        config.simulation.extra_devices = extra_devices
    if seed is not None:
        config.simulation.random_seed = seed

    click.echo("Available devices:")
    _echo_devices(config.build_registry().list())


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config"),
    help="Output directory for config files",
)
def init(output):
    """Generate a sample configuration file.

    Creates config.yaml with the broker settings, simulation parameters
    and the sample device fleet.
    """
    output.mkdir(parents=True, exist_ok=True)

    cfg = Config.default()
    config_path = output / "config.yaml"
    cfg.to_yaml(config_path)

    click.echo(f"Created: {config_path}")
    click.echo()
    click.echo("Edit the config file to customize:")
    click.echo("  - MQTT broker URL and credentials")
    click.echo("  - Devices, intervals and topics")
    click.echo()
    click.echo(f"Run with: devicefleet-sim start --config {config_path}")


@main.command("help")
@click.pass_context
def show_help(ctx):
    """Show this help message."""
    click.echo(ctx.parent.get_help())


if __name__ == "__main__":
    main()
