#!/usr/bin/env python3
"""
BME Exporter - Prometheus exporter for Bosch Sensortec environmental sensors.

Supports:
- BMP180, BMP280, BME280 and BMP388 on an I2C bus
- Temperature, pressure and (BME280 only) relative humidity
- Configuration from flags, environment, local YAML and a central server
- Optional management API with a /health endpoint
"""
import json
import logging
import sys
import threading
import time
from datetime import datetime
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Dict, Optional, Tuple

import click
from prometheus_client import REGISTRY, start_http_server

from collector import EnvironmentCollector, resolve_host_label
from config_loader import ConfigError, ConfigLoader
from sensors import I2CBus, InvalidModel, SensorError, get_sensor, resolve_identifier, resolve_name


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool, driver_debug: bool = False):
    """
    Set up root logging.
    Driver and bus loggers trace every register access at DEBUG, so they
    stay at INFO in verbose mode unless driver_debug is also set.
    """
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("sensors").setLevel(
        logging.DEBUG if verbose and driver_debug else logging.INFO
    )


def health_status(collector: EnvironmentCollector, start_time: datetime) -> Dict:
    """Build the /health response body from the collector's last scrape."""
    if collector.last_collection_time is None:
        status = "starting"
    elif collector.last_failed:
        status = "degraded"
    else:
        status = "healthy"

    last = collector.last_collection_time
    return {
        "status": status,
        "host": collector.host,
        "sensor_type": collector.sensor_type,
        "humidity_supported": collector.humidity_supported,
        "uptime_seconds": int((datetime.now() - start_time).total_seconds()),
        "last_collection": last.isoformat() if last else None,
        "failed_metrics": list(collector.last_failed),
    }


class HealthHandler(BaseHTTPRequestHandler):
    """
    HTTP handler for the management API.
    GET /health - Exporter and sensor status
    """

    def do_GET(self):
        if self.path == '/health':
            self._handle_health()
        else:
            self.send_response(404)
            self.send_header('Content-Type', 'text/plain')
            self.end_headers()
            self.wfile.write(b'Not Found\n')

    def _handle_health(self):
        try:
            response = health_status(self.server.collector, self.server.start_time)
            self.send_response(200)
            self.send_header('Content-Type', 'application/json')
            self.end_headers()
            self.wfile.write(json.dumps(response, indent=2).encode())
        except Exception as e:
            logger.error(f"Error handling /health: {e}")
            self.send_error(500, f"Internal server error: {e}")

    def log_message(self, format, *args):
        """Suppress default HTTP request logs"""
        pass


def start_health_server(collector: EnvironmentCollector, address: str, port: int) -> HTTPServer:
    """
    Start the management API in a daemon thread.

    Args:
        collector: Collector whose last scrape is reported
        address: Address to bind
        port: Port to listen on (e.g., 8001)
    """
    server = HTTPServer((address, port), HealthHandler)
    server.collector = collector
    server.start_time = datetime.now()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info(f"🩺 Management API started on :{port}")
    logger.info(f"   - GET  :{port}/health - Health check status")
    return server


def bootstrap(config: Dict) -> Tuple[I2CBus, EnvironmentCollector]:
    """
    Open the sensor and build the collector.

    The order is fixed: bus, model, driver, signature, calibration,
    collector. Every step before the collector is fatal on failure.

    Returns:
        The open bus (caller closes it) and the collector owning the sensor

    Raises:
        OSError: If the bus cannot be opened
        InvalidModel: If the configured model is not supported
        SensorError: If the signature or calibration cannot be read or is invalid
    """
    bus = I2CBus(config["i2c_address"], config["i2c_bus"])
    try:
        sensor_type = resolve_identifier(config["model"])
        sensor = get_sensor(sensor_type, bus)
        logger.info(f"Initialized {sensor.__class__.__name__} for model {config['model']}")

        signature = sensor.read_signature()
        logger.info(f"This Bosch Sensortec sensor has signature: 0x{signature:x}")
        # Label only: a signature that does not match the configured model is not an error
        identity = resolve_name(signature)

        sensor.validate_coefficients()

        collector = EnvironmentCollector(sensor, identity, resolve_host_label())
    except Exception:
        bus.close()
        raise

    logger.info(f"✅ Collector ready: sensor_type={identity} host={collector.host}")
    return bus, collector


def serve(collector: EnvironmentCollector, config: Dict, registry=REGISTRY) -> Optional[HTTPServer]:
    """
    Register the collector and start the HTTP servers.

    Raises:
        OSError: If a listening socket cannot be bound
    """
    registry.register(collector)
    logger.info("✅ On-demand collector registered")

    start_http_server(config["port"], addr=config["listen_address"], registry=registry)
    logger.info(f"📊 Listening for metrics on port :{config['port']}")

    health_server = None
    if config["health_port"]:
        health_server = start_health_server(
            collector, config["listen_address"], config["health_port"]
        )
    return health_server


def run(config: Dict) -> int:
    """
    Start the exporter and block serving scrapes.

    Returns:
        Process exit code
    """
    logger.info("🚀 BME Exporter starting...")
    logger.info(f"Configuration: {config}")

    try:
        bus, collector = bootstrap(config)
    except (OSError, InvalidModel, SensorError) as e:
        logger.error(f"❌ Sensor initialization failed: {e}")
        return 1

    try:
        serve(collector, config)
        logger.info("✅ Exporter fully initialized - waiting for scrape requests")

        # Everything happens when scraped, the main thread only keeps the process alive
        while True:
            time.sleep(60)
    except OSError as e:
        logger.error(f"❌ Failed to start HTTP server: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Exporter stopped by user")
        return 0
    finally:
        bus.close()


@click.command(help="Export Bosch Sensortec sensor readings as Prometheus metrics.")
@click.option("--i2caddress", "i2c_address", type=str, help="The I2C address of the sensor [default: 0x76]")
@click.option("--i2cbus", "i2c_bus", type=int, help="The I2C bus ID [default: 1]")
@click.option("-p", "--port", type=int, help="The port on which to serve metrics [default: 8000]")
@click.option("--model", type=str, help="The model of sensor: BME180, BMP280, BME280, BME388 [default: BME280]")
@click.option("-v", "--verbose", is_flag=True, help="Change logging level to verbose")
@click.option("--health-port", type=int, help="Port for the management API (disabled if unset)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Local YAML config file [default: $LOCAL_CONFIG_PATH or ./config.yaml]",
)
def main(i2c_address, i2c_bus, port, model, verbose, health_port, config_path):
    configure_logging(verbose)

    overrides = {
        "i2c_address": i2c_address,
        "i2c_bus": i2c_bus,
        "port": port,
        "model": model,
        "verbose": True if verbose else None,
        "health_port": health_port,
    }
    try:
        config = ConfigLoader(config_path).load(overrides)
    except ConfigError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    configure_logging(config["verbose"], config["driver_debug"])
    sys.exit(run(config))


if __name__ == "__main__":
    main()
