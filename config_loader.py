"""
Configuration loader with optional central API, local file and environment.
"""
import requests
import yaml
import socket
import logging
import os
from typing import Any, Dict, Optional


DEFAULTS = {
    "i2c_address": 0x76,
    "i2c_bus": 1,
    "port": 8000,
    "listen_address": "0.0.0.0",
    "model": "BME280",
    "verbose": False,
    "driver_debug": False,
    "health_port": None,
}

ENV_PREFIX = "BME_EXPORTER_"


class ConfigError(ValueError):
    """Raised for unreadable config files and invalid config values."""


class ConfigLoader:
    """
    Build the exporter configuration from several sources.

    Priority (later wins):
    1. Built-in defaults
    2. Central Config API server, if CONFIG_SERVER_URL is set
    3. Local config.yaml, if it exists
    4. BME_EXPORTER_<KEY> environment variables
    5. Explicit overrides (command-line flags)

    Environment variables:
    - CONFIG_SERVER_URL: Central config server URL (unset: not used)
    - CONFIG_TIMEOUT: Request timeout in seconds (default: 5)
    - LOCAL_CONFIG_PATH: Path to local config file (default: ./config.yaml)
    """

    def __init__(self, local_config_path: Optional[str] = None):
        self.config_server_url = os.getenv("CONFIG_SERVER_URL")
        self.local_config_path = local_config_path or os.getenv(
            "LOCAL_CONFIG_PATH",
            "./config.yaml"
        )
        self.timeout = int(os.getenv("CONFIG_TIMEOUT", "5"))
        self.device_id = socket.gethostname()
        self.logger = logging.getLogger(self.__class__.__name__)

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> Dict:
        """
        Load and validate configuration.

        Args:
            overrides: Values that take precedence over every other source.
                       None values are ignored.

        Returns:
            Normalized configuration dictionary

        Raises:
            ConfigError: If the local file cannot be parsed or a value is invalid
        """
        config = dict(DEFAULTS)

        if self.config_server_url:
            try:
                config.update(self._fetch_from_server())
                self.logger.info("✅ Loaded config from central server")
            except Exception as e:
                self.logger.warning(f"⚠️ Failed to fetch from central server: {e}")

        if os.path.exists(self.local_config_path):
            config.update(self._load_local_config())
            self.logger.info(f"✅ Loaded local config from {self.local_config_path}")

        config.update(self._load_env())

        if overrides:
            config.update({k: v for k, v in overrides.items() if v is not None})

        return normalize(config)

    def _fetch_from_server(self) -> Dict:
        """
        Fetch configuration from central Config API server.

        Returns:
            Configuration dictionary from server

        Raises:
            Exception: If request fails or server returns error
        """
        url = f"{self.config_server_url}/config/{self.device_id}"
        self.logger.info(f"Fetching config from {url}")

        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()

        config = response.json()
        if not isinstance(config, dict):
            raise ValueError(f"Expected a JSON object, got {type(config).__name__}")
        self.logger.debug(f"Received config: {config}")
        return config

    def _load_local_config(self) -> Dict:
        """
        Load configuration from local config.yaml file.

        Raises:
            ConfigError: If the file cannot be read or is not a mapping
        """
        self.logger.info(f"Loading config from {self.local_config_path}")

        try:
            with open(self.local_config_path, 'r') as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read {self.local_config_path}: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(f"{self.local_config_path} must contain a mapping")

        self.logger.debug(f"Loaded local config: {config}")
        return config

    def _load_env(self) -> Dict:
        config = {}
        for key in DEFAULTS:
            value = os.getenv(ENV_PREFIX + key.upper())
            if value is not None:
                config[key] = value
        return config


def parse_address(value: Any) -> int:
    """
    Parse an I2C address given as int, "0x76" or "118".

    Raises:
        ConfigError: If the value is not a 7-bit address
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid I2C address: {value!r}")
    if isinstance(value, int):
        address = value
    else:
        text = str(value).strip().lower()
        try:
            address = int(text, 16) if text.startswith("0x") else int(text)
        except ValueError:
            raise ConfigError(f"Invalid I2C address: {value!r}")

    if not 0 <= address <= 0x7F:
        raise ConfigError(f"I2C address out of 7-bit range: 0x{address:x}")
    return address


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"Invalid boolean: {value!r}")


def _parse_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {key}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {key}: {value!r}")


def _parse_port(key: str, value: Any) -> int:
    port = _parse_int(key, value)
    if not 1 <= port <= 65535:
        raise ConfigError(f"{key} out of range: {port}")
    return port


def normalize(config: Dict) -> Dict:
    """
    Coerce raw values from any source into their typed form.

    The model name is passed through untouched; it is validated against the
    supported sensors at startup.
    """
    result = dict(config)
    result["i2c_address"] = parse_address(config["i2c_address"])
    result["i2c_bus"] = _parse_int("i2c_bus", config["i2c_bus"])
    if result["i2c_bus"] < 0:
        raise ConfigError(f"Invalid i2c_bus: {result['i2c_bus']}")
    result["port"] = _parse_port("port", config["port"])
    result["verbose"] = parse_bool(config["verbose"])
    result["driver_debug"] = parse_bool(config["driver_debug"])
    result["model"] = str(config["model"])
    result["listen_address"] = str(config["listen_address"])

    health_port = config.get("health_port")
    if health_port in (None, ""):
        result["health_port"] = None
    else:
        result["health_port"] = _parse_port("health_port", health_port)
    return result
