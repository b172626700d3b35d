"""
Bosch BMP388 driver.

Forced-mode conversions with the floating point compensation from the
BMP388 datasheet (section 9). Calibration words are scaled once when read.
"""
import time
from dataclasses import dataclass

from construct import Int8sl, Int16sl, Int16ul, Int24ul, Struct

from .base import Accuracy, BaseSensor, SensorError


REG_STATUS = 0x03
REG_DATA = 0x04
REG_PWR_CTRL = 0x1B
REG_OSR = 0x1C
REG_CALIBRATION = 0x31

STATUS_DRDY_PRESS = 0x20
STATUS_DRDY_TEMP = 0x40
# press_en | temp_en | mode=forced
PWR_FORCED = 0x13

# (pressure, temperature) oversampling, per the datasheet's recommended settings
OVERSAMPLING = {
    Accuracy.ULTRA_LOW: (1, 1),
    Accuracy.LOW: (2, 1),
    Accuracy.STANDARD: (4, 1),
    Accuracy.HIGH: (8, 1),
    Accuracy.ULTRA_HIGH: (16, 2),
}
OSR_CODE = {1: 0, 2: 1, 4: 2, 8: 3, 16: 4, 32: 5}

CALIBRATION = Struct(
    "T1" / Int16ul,
    "T2" / Int16ul,
    "T3" / Int8sl,
    "P1" / Int16sl,
    "P2" / Int16sl,
    "P3" / Int8sl,
    "P4" / Int8sl,
    "P5" / Int16ul,
    "P6" / Int16ul,
    "P7" / Int8sl,
    "P8" / Int8sl,
    "P9" / Int16sl,
    "P10" / Int8sl,
    "P11" / Int8sl,
)

# Both 24-bit values are little endian: xlsb, lsb, msb
MEASUREMENT = Struct(
    "press_raw" / Int24ul,
    "temp_raw" / Int24ul,
)


@dataclass(frozen=True)
class Bmp388Calibration:
    T1: float
    T2: float
    T3: float
    P1: float
    P2: float
    P3: float
    P4: float
    P5: float
    P6: float
    P7: float
    P8: float
    P9: float
    P10: float
    P11: float

    @classmethod
    def from_registers(cls, c) -> "Bmp388Calibration":
        return cls(
            T1=c.T1 * 2.0 ** 8,
            T2=c.T2 / 2.0 ** 30,
            T3=c.T3 / 2.0 ** 48,
            P1=(c.P1 - 2 ** 14) / 2.0 ** 20,
            P2=(c.P2 - 2 ** 14) / 2.0 ** 29,
            P3=c.P3 / 2.0 ** 32,
            P4=c.P4 / 2.0 ** 37,
            P5=c.P5 * 2.0 ** 3,
            P6=c.P6 / 2.0 ** 6,
            P7=c.P7 / 2.0 ** 8,
            P8=c.P8 / 2.0 ** 15,
            P9=c.P9 / 2.0 ** 48,
            P10=c.P10 / 2.0 ** 48,
            P11=c.P11 / 2.0 ** 65,
        )


def compensate_temperature(cal: Bmp388Calibration, temp_raw: int) -> float:
    """Linearized temperature in celsius, also used by pressure compensation."""
    partial1 = temp_raw - cal.T1
    partial2 = partial1 * cal.T2
    return partial2 + partial1 * partial1 * cal.T3


def compensate_pressure(cal: Bmp388Calibration, press_raw: int, t_lin: float) -> float:
    t2 = t_lin * t_lin
    t3 = t2 * t_lin
    out1 = cal.P5 + cal.P6 * t_lin + cal.P7 * t2 + cal.P8 * t3
    out2 = press_raw * (cal.P1 + cal.P2 * t_lin + cal.P3 * t2 + cal.P4 * t3)
    p2 = float(press_raw) * press_raw
    out3 = p2 * (cal.P9 + cal.P10 * t_lin) + p2 * press_raw * cal.P11
    return out1 + out2 + out3


class BMP388Sensor(BaseSensor):
    """
    Driver for the Bosch BMP388 (temperature and pressure).
    Datasheet: https://www.bosch-sensortec.com/media/boschsensortec/downloads/datasheets/bst-bmp388-ds001.pdf
    """

    REG_CHIP_ID = 0x00

    def _read_calibration(self):
        raw = self._read_block(REG_CALIBRATION, 21)
        return raw, Bmp388Calibration.from_registers(CALIBRATION.parse(raw))

    def _check_calibration(self, raw: bytes, calibration) -> None:
        t1 = raw[0] | raw[1] << 8
        if t1 == 0:
            raise SensorError("Invalid calibration: T1=0")

    def read_temperature_c(self, accuracy: Accuracy) -> float:
        data = self._measure(accuracy)
        return compensate_temperature(self.calibration(), data.temp_raw)

    def read_pressure_pa(self, accuracy: Accuracy) -> float:
        data = self._measure(accuracy)
        t_lin = compensate_temperature(self.calibration(), data.temp_raw)
        return compensate_pressure(self.calibration(), data.press_raw, t_lin)

    def _measure(self, accuracy: Accuracy):
        osr_p, osr_t = OVERSAMPLING[accuracy]
        self._write_byte(REG_OSR, OSR_CODE[osr_t] << 3 | OSR_CODE[osr_p])
        self._write_byte(REG_PWR_CTRL, PWR_FORCED)

        # Datasheet 3.9.2 conversion time, in microseconds
        wait_us = 234 + (392 + osr_p * 2020) + (163 + osr_t * 2020)
        time.sleep(wait_us / 1e6)
        status = self._read_byte(REG_STATUS)
        if not (status & STATUS_DRDY_PRESS and status & STATUS_DRDY_TEMP):
            raise SensorError(f"Conversion not ready after {wait_us}us (status 0x{status:02x})")

        return MEASUREMENT.parse(self._read_block(REG_DATA, 6))
