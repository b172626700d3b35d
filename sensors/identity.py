"""
Sensor identity resolution.

Two independent lookups:
- signature byte -> model name, used for the sensor_type label. Never fails.
- configured model name -> SensorType, used to pick the driver. Fails loudly.

The model names are the label values dashboards already match on, including
the "BME180" and "BME388" spellings for the BMP180 and BMP388 parts.
"""
from enum import Enum
from typing import Optional


UNKNOWN = "unknown"


class SensorType(Enum):
    BMP180 = "BMP180"
    BMP280 = "BMP280"
    BME280 = "BME280"
    BMP388 = "BMP388"


class InvalidModel(ValueError):
    """Configured model name does not match any supported sensor."""

    def __init__(self, name: str):
        super().__init__(f"unknown sensor type {name}")
        self.name = name


SIGNATURES = {
    0x55: "BME180",
    0x58: "BMP280",
    0x60: "BME280",
    0x50: "BME388",
}

MODELS = {
    "BME180": SensorType.BMP180,
    "BMP280": SensorType.BMP280,
    "BME280": SensorType.BME280,
    "BME388": SensorType.BMP388,
}


def resolve_name(signature: Optional[int]) -> str:
    """
    Map a chip id byte to a model name.

    A failed signature read is passed in as None and lands on the same
    "unknown" value as an unrecognized byte. The two cases are not
    distinguished.
    """
    return SIGNATURES.get(signature, UNKNOWN)


def resolve_identifier(model_name: str) -> SensorType:
    """
    Map a configured model name to the driver type.

    Raises:
        InvalidModel: If model_name is not one of the supported names
    """
    try:
        return MODELS[model_name]
    except (KeyError, TypeError):
        raise InvalidModel(model_name)
