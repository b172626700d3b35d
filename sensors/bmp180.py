"""
Bosch BMP180 driver.

The BMP180 has no forced/normal modes: every reading starts a conversion
through the control register and polls the start-of-conversion bit.
Compensation is the integer algorithm from the datasheet (section 3.5).
"""
import time
from dataclasses import dataclass

from construct import Int16sb, Int16ub, Struct

from .base import Accuracy, BaseSensor, SensorError


REG_CALIBRATION = 0xAA
REG_CONTROL = 0xF4
REG_DATA = 0xF6

CMD_TEMPERATURE = 0x2E
CMD_PRESSURE = 0x34
CONTROL_SCO = 0x20

TEMPERATURE_WAIT_MS = 4.5
# Maximum conversion time for each oversampling setting
PRESSURE_WAIT_MS = {0: 4.5, 1: 7.5, 2: 13.5, 3: 25.5}

OVERSAMPLING = {
    Accuracy.ULTRA_LOW: 0,
    Accuracy.LOW: 1,
    Accuracy.STANDARD: 1,
    Accuracy.HIGH: 2,
    Accuracy.ULTRA_HIGH: 3,
}

CALIBRATION = Struct(
    "AC1" / Int16sb,
    "AC2" / Int16sb,
    "AC3" / Int16sb,
    "AC4" / Int16ub,
    "AC5" / Int16ub,
    "AC6" / Int16ub,
    "B1" / Int16sb,
    "B2" / Int16sb,
    "MB" / Int16sb,
    "MC" / Int16sb,
    "MD" / Int16sb,
)


@dataclass(frozen=True)
class Bmp180Calibration:
    AC1: int
    AC2: int
    AC3: int
    AC4: int
    AC5: int
    AC6: int
    B1: int
    B2: int
    MB: int
    MC: int
    MD: int


def compute_b5(cal: Bmp180Calibration, ut: int) -> int:
    x1 = (ut - cal.AC6) * cal.AC5 >> 15
    if x1 + cal.MD == 0:
        raise SensorError(f"Temperature compensation divided by zero (UT={ut})")
    x2 = (cal.MC << 11) // (x1 + cal.MD)
    return x1 + x2


def compensate_temperature(cal: Bmp180Calibration, ut: int) -> float:
    """Temperature in celsius from the uncompensated value UT."""
    b5 = compute_b5(cal, ut)
    return ((b5 + 8) >> 4) / 10.0


def compensate_pressure(cal: Bmp180Calibration, up: int, b5: int, oss: int) -> float:
    """Pressure in pascal from the uncompensated value UP."""
    b6 = b5 - 4000
    x1 = (cal.B2 * (b6 * b6 >> 12)) >> 11
    x2 = cal.AC2 * b6 >> 11
    x3 = x1 + x2
    b3 = (((cal.AC1 * 4 + x3) << oss) + 2) // 4
    x1 = cal.AC3 * b6 >> 13
    x2 = (cal.B1 * (b6 * b6 >> 12)) >> 16
    x3 = (x1 + x2 + 2) >> 2
    b4 = cal.AC4 * (x3 + 32768) >> 15
    if b4 == 0:
        raise SensorError("Pressure compensation divided by zero")
    if up < b3:
        raise SensorError(f"Uncompensated pressure {up} below offset B3={b3}")
    b7 = (up - b3) * (50000 >> oss)
    if b7 < 0x80000000:
        p = (b7 * 2) // b4
    else:
        p = (b7 // b4) * 2
    x1 = (p >> 8) * (p >> 8)
    x1 = (x1 * 3038) >> 16
    x2 = (-7357 * p) >> 16
    return float(p + ((x1 + x2 + 3791) >> 4))


class BMP180Sensor(BaseSensor):
    """
    Driver for the Bosch BMP180 (temperature and pressure).
    Datasheet: https://cdn-shop.adafruit.com/datasheets/BST-BMP180-DS000-09.pdf
    """

    def _read_calibration(self):
        raw = self._read_block(REG_CALIBRATION, 22)
        container = CALIBRATION.parse(raw)
        return raw, Bmp180Calibration(**{k: v for k, v in container.items() if not k.startswith("_")})

    def _check_calibration(self, raw: bytes, calibration) -> None:
        # Datasheet communication check: no word may read 0x0000 or 0xFFFF
        for offset in range(0, len(raw), 2):
            word = raw[offset] << 8 | raw[offset + 1]
            if word in (0x0000, 0xFFFF):
                raise SensorError(
                    f"Invalid calibration word at 0x{REG_CALIBRATION + offset:02x}: 0x{word:04x}"
                )

    def read_temperature_c(self, accuracy: Accuracy) -> float:
        return compensate_temperature(self.calibration(), self._read_ut())

    def read_pressure_pa(self, accuracy: Accuracy) -> float:
        oss = OVERSAMPLING[accuracy]
        b5 = compute_b5(self.calibration(), self._read_ut())
        up = self._read_up(oss)
        return compensate_pressure(self.calibration(), up, b5, oss)

    def _read_ut(self) -> int:
        self._convert(CMD_TEMPERATURE, TEMPERATURE_WAIT_MS)
        data = self._read_block(REG_DATA, 2)
        return data[0] << 8 | data[1]

    def _read_up(self, oss: int) -> int:
        self._convert(CMD_PRESSURE + (oss << 6), PRESSURE_WAIT_MS[oss])
        data = self._read_block(REG_DATA, 3)
        return (data[0] << 16 | data[1] << 8 | data[2]) >> (8 - oss)

    def _convert(self, command: int, wait_ms: float) -> None:
        self._write_byte(REG_CONTROL, command)
        time.sleep(wait_ms / 1000)
        if self._read_byte(REG_CONTROL) & CONTROL_SCO:
            raise SensorError(f"Conversion 0x{command:02x} still running after {wait_ms}ms")
