"""
Sensor factory for loading the driver matching a configured sensor type.
"""
from .base import Accuracy, BaseSensor, SensorError
from .i2c import I2CBus
from .identity import (
    InvalidModel,
    SensorType,
    UNKNOWN,
    resolve_identifier,
    resolve_name,
)


def get_sensor(sensor_type: SensorType, bus: I2CBus) -> BaseSensor:
    """
    Factory function to get the driver for a sensor type.

    Args:
        sensor_type: Resolved sensor type (see resolve_identifier)
        bus: Open I2C bus addressed at the sensor

    Returns:
        Driver instance bound to the bus

    Raises:
        ValueError: If sensor_type has no driver
    """
    if sensor_type is SensorType.BMP180:
        from .bmp180 import BMP180Sensor
        return BMP180Sensor(bus)

    elif sensor_type is SensorType.BMP280:
        from .bmp280 import BMP280Sensor
        return BMP280Sensor(bus)

    elif sensor_type is SensorType.BME280:
        from .bmp280 import BME280Sensor
        return BME280Sensor(bus)

    elif sensor_type is SensorType.BMP388:
        from .bmp388 import BMP388Sensor
        return BMP388Sensor(bus)

    else:
        raise ValueError(
            f"Unsupported sensor type: {sensor_type}. "
            f"Supported types: {', '.join(t.value for t in SensorType)}"
        )


__all__ = [
    "Accuracy",
    "BaseSensor",
    "I2CBus",
    "InvalidModel",
    "SensorError",
    "SensorType",
    "UNKNOWN",
    "get_sensor",
    "resolve_identifier",
    "resolve_name",
]
