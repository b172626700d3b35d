"""
Base sensor abstract class for Bosch Sensortec barometric sensors.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Tuple
import logging

from .i2c import I2CBus


class SensorError(RuntimeError):
    """Raised when the sensor cannot be read or reports unusable data."""


class Accuracy(Enum):
    """
    Requested measurement precision.

    Higher accuracy selects a higher oversampling profile on the device,
    which makes each conversion slower.
    """
    ULTRA_LOW = 0
    LOW = 1
    STANDARD = 2
    HIGH = 3
    ULTRA_HIGH = 4


class BaseSensor(ABC):
    """
    Abstract base class for all sensor drivers.
    Each driver is bound to one open I2C bus for its whole lifetime.
    """

    # Register holding the chip id (signature byte)
    REG_CHIP_ID = 0xD0

    def __init__(self, bus: I2CBus):
        """
        Initialize driver on an already opened bus.

        Args:
            bus: Open I2C bus addressed at the sensor
        """
        self.bus = bus
        self.logger = logging.getLogger(f"{__package__}.{self.__class__.__name__}")
        self._calibration = None

    @abstractmethod
    def read_temperature_c(self, accuracy: Accuracy) -> float:
        """
        Run one temperature conversion.

        Returns:
            Compensated temperature in degrees celsius

        Raises:
            SensorError: If the bus transaction or conversion fails
        """
        pass

    @abstractmethod
    def read_pressure_pa(self, accuracy: Accuracy) -> float:
        """
        Run one pressure conversion.

        Returns:
            Compensated pressure in pascal

        Raises:
            SensorError: If the bus transaction or conversion fails
        """
        pass

    @abstractmethod
    def _read_calibration(self):
        """Read and decode the on-device calibration coefficients."""
        pass

    @abstractmethod
    def _check_calibration(self, raw: bytes, calibration) -> None:
        """Raise SensorError if decoded coefficients are unusable."""
        pass

    def supports_humidity(self) -> bool:
        return False

    def read_humidity_rh(self, accuracy: Accuracy) -> Tuple[bool, float]:
        """
        Run one humidity conversion if the part has a humidity channel.

        Returns:
            (supported, value). Value is 0.0 when unsupported.

        Raises:
            SensorError: If the part supports humidity and the read fails
        """
        return False, 0.0

    def read_signature(self) -> int:
        """
        Read the chip id register.

        Raises:
            SensorError: If the bus transaction fails
        """
        return self._read_byte(self.REG_CHIP_ID)

    def validate_coefficients(self) -> None:
        """
        Read calibration from the device and check it is plausible.
        A blank (all 0x00) or unprogrammed (all 0xFF) block means the
        device is absent or defective.

        Raises:
            SensorError: If the coefficients are invalid or unreadable
        """
        raw, calibration = self._read_calibration()
        if all(b == 0x00 for b in raw) or all(b == 0xFF for b in raw):
            raise SensorError(
                f"{self.__class__.__name__} calibration block is blank: {raw.hex()}"
            )
        self._check_calibration(raw, calibration)
        self._calibration = calibration
        self.logger.debug(f"Calibration coefficients: {calibration}")

    def calibration(self):
        """Cached calibration, read from the device on first use."""
        if self._calibration is None:
            _, self._calibration = self._read_calibration()
        return self._calibration

    def _read_byte(self, register: int) -> int:
        try:
            return self.bus.read_byte(register)
        except OSError as e:
            raise SensorError(f"Failed to read register 0x{register:02x}: {e}") from e

    def _read_block(self, register: int, length: int) -> bytes:
        try:
            return self.bus.read_block(register, length)
        except OSError as e:
            raise SensorError(
                f"Failed to read {length} bytes at 0x{register:02x}: {e}"
            ) from e

    def _write_byte(self, register: int, value: int) -> None:
        try:
            self.bus.write_byte(register, value)
        except OSError as e:
            raise SensorError(f"Failed to write register 0x{register:02x}: {e}") from e
