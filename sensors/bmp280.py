"""
Bosch BMP280 and BME280 drivers.

Measurements run in forced mode: each read triggers one conversion,
waits for it to finish and reads the data registers. Compensation uses the
double precision formulas from the BME280 datasheet (section 8.1).
"""
import time
from dataclasses import dataclass, fields
from typing import Tuple

from construct import BitStruct, BitsInteger, Int8sl, Int8ul, Int16sl, Int16ul, Padding, Struct

from .base import Accuracy, BaseSensor, SensorError


REG_CALIBRATION1 = 0x88
REG_CALIBRATION_H1 = 0xA1
REG_CALIBRATION2 = 0xE1
REG_CTRL_HUM = 0xF2
REG_STATUS = 0xF3
REG_CTRL_MEAS = 0xF4
REG_DATA = 0xF7

MODE_FORCED = 0b01
STATUS_MEASURING = 0x08

# Raw value reported for a channel whose oversampling is "skipped"
SKIPPED_20BIT = 0x80000
SKIPPED_16BIT = 0x8000

OVERSAMPLING = {
    Accuracy.ULTRA_LOW: 1,
    Accuracy.LOW: 2,
    Accuracy.STANDARD: 4,
    Accuracy.HIGH: 8,
    Accuracy.ULTRA_HIGH: 16,
}

# ctrl_meas / ctrl_hum register encoding of each oversampling ratio
OSRS_CODE = {1: 0b001, 2: 0b010, 4: 0b011, 8: 0b100, 16: 0b101}

CALIBRATION1 = Struct(
    "dig_T1" / Int16ul,
    "dig_T2" / Int16sl,
    "dig_T3" / Int16sl,
    "dig_P1" / Int16ul,
    "dig_P2" / Int16sl,
    "dig_P3" / Int16sl,
    "dig_P4" / Int16sl,
    "dig_P5" / Int16sl,
    "dig_P6" / Int16sl,
    "dig_P7" / Int16sl,
    "dig_P8" / Int16sl,
    "dig_P9" / Int16sl,
)

# dig_H4 and dig_H5 share the nibbles of 0xE5, decoded by hand
CALIBRATION2 = Struct(
    "dig_H2" / Int16sl,
    "dig_H3" / Int8ul,
    "e4" / Int8sl,
    "e5" / Int8ul,
    "e6" / Int8sl,
    "dig_H6" / Int8sl,
)

MEASUREMENT = BitStruct(
    "press_raw" / BitsInteger(20),
    Padding(4),
    "temp_raw" / BitsInteger(20),
    Padding(4),
)

MEASUREMENT_HUMIDITY = BitStruct(
    "press_raw" / BitsInteger(20),
    Padding(4),
    "temp_raw" / BitsInteger(20),
    Padding(4),
    "hum_raw" / BitsInteger(16),
)


@dataclass(frozen=True)
class Bmp280Calibration:
    dig_T1: int
    dig_T2: int
    dig_T3: int
    dig_P1: int
    dig_P2: int
    dig_P3: int
    dig_P4: int
    dig_P5: int
    dig_P6: int
    dig_P7: int
    dig_P8: int
    dig_P9: int


@dataclass(frozen=True)
class Bme280Calibration(Bmp280Calibration):
    dig_H1: int
    dig_H2: int
    dig_H3: int
    dig_H4: int
    dig_H5: int
    dig_H6: int


def _unpack(cls, container) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in container.items() if k in names}


def compensate_temperature(cal: Bmp280Calibration, temp_raw: int) -> Tuple[float, float]:
    """
    Returns:
        (temperature in celsius, t_fine carried into the other channels)
    """
    var1 = (temp_raw / 16384.0 - cal.dig_T1 / 1024.0) * cal.dig_T2
    var2 = (temp_raw / 131072.0 - cal.dig_T1 / 8192.0) ** 2 * cal.dig_T3
    t_fine = var1 + var2
    return t_fine / 5120.0, t_fine


def compensate_pressure(cal: Bmp280Calibration, press_raw: int, t_fine: float) -> float:
    var1 = t_fine / 2.0 - 64000.0
    var2 = var1 * var1 * cal.dig_P6 / 32768.0
    var2 = var2 + var1 * cal.dig_P5 * 2.0
    var2 = var2 / 4.0 + cal.dig_P4 * 65536.0
    var1 = (cal.dig_P3 * var1 * var1 / 524288.0 + cal.dig_P2 * var1) / 524288.0
    var1 = (1.0 + var1 / 32768.0) * cal.dig_P1
    if var1 == 0.0:
        raise SensorError("Pressure compensation divided by zero")
    p = 1048576.0 - press_raw
    p = (p - var2 / 4096.0) * 6250.0 / var1
    var1 = cal.dig_P9 * p * p / 2147483648.0
    var2 = p * cal.dig_P8 / 32768.0
    return p + (var1 + var2 + cal.dig_P7) / 16.0


def compensate_humidity(cal: Bme280Calibration, hum_raw: int, t_fine: float) -> float:
    h = t_fine - 76800.0
    h = (hum_raw - (cal.dig_H4 * 64.0 + cal.dig_H5 / 16384.0 * h)) * (
        cal.dig_H2 / 65536.0 * (1.0 + cal.dig_H6 / 67108864.0 * h * (1.0 + cal.dig_H3 / 67108864.0 * h))
    )
    h = h * (1.0 - cal.dig_H1 * h / 524288.0)
    return min(max(h, 0.0), 100.0)


class BMP280Sensor(BaseSensor):
    """
    Driver for the Bosch BMP280 (temperature and pressure).
    Datasheet: https://www.bosch-sensortec.com/media/boschsensortec/downloads/datasheets/bst-bmp280-ds001.pdf
    """

    def _read_calibration(self):
        raw = self._read_block(REG_CALIBRATION1, 24)
        return raw, Bmp280Calibration(**_unpack(Bmp280Calibration, CALIBRATION1.parse(raw)))

    def _check_calibration(self, raw: bytes, calibration) -> None:
        if calibration.dig_T1 == 0 or calibration.dig_P1 == 0:
            raise SensorError(
                f"Invalid calibration: dig_T1={calibration.dig_T1} dig_P1={calibration.dig_P1}"
            )

    def read_temperature_c(self, accuracy: Accuracy) -> float:
        data = self._measure(accuracy)
        temperature, _ = compensate_temperature(self.calibration(), data.temp_raw)
        return temperature

    def read_pressure_pa(self, accuracy: Accuracy) -> float:
        data = self._measure(accuracy)
        _, t_fine = compensate_temperature(self.calibration(), data.temp_raw)
        if data.press_raw == SKIPPED_20BIT:
            raise SensorError("Pressure channel returned the skipped marker")
        return compensate_pressure(self.calibration(), data.press_raw, t_fine)

    def _measure(self, accuracy: Accuracy):
        """Trigger one forced-mode conversion and return the raw ADC values."""
        osrs = OVERSAMPLING[accuracy]
        self._configure(osrs)
        self._write_byte(REG_CTRL_MEAS, OSRS_CODE[osrs] << 5 | OSRS_CODE[osrs] << 2 | MODE_FORCED)

        # Maximum conversion time from datasheet appendix B, in ms
        time.sleep(self._measurement_time_ms(osrs) / 1000)
        if self._read_byte(REG_STATUS) & STATUS_MEASURING:
            raise SensorError("Measurement still in progress after maximum conversion time")

        data = self._parse_measurement(self._read_block(REG_DATA, self._data_length()))
        if data.temp_raw == SKIPPED_20BIT:
            raise SensorError("Temperature channel returned the skipped marker")
        return data

    def _configure(self, osrs: int) -> None:
        pass

    def _measurement_time_ms(self, osrs: int) -> float:
        return 1.25 + 2.3 * osrs + (2.3 * osrs + 0.575)

    def _data_length(self) -> int:
        return 6

    def _parse_measurement(self, raw: bytes):
        return MEASUREMENT.parse(raw)


class BME280Sensor(BMP280Sensor):
    """
    Driver for the Bosch BME280 (BMP280 plus relative humidity).
    Datasheet: https://www.bosch-sensortec.com/media/boschsensortec/downloads/datasheets/bst-bme280-ds002.pdf
    """

    def _read_calibration(self):
        raw1 = self._read_block(REG_CALIBRATION1, 24)
        h1 = self._read_byte(REG_CALIBRATION_H1)
        raw2 = self._read_block(REG_CALIBRATION2, 7)

        part2 = CALIBRATION2.parse(raw2)
        calibration = Bme280Calibration(
            **_unpack(Bmp280Calibration, CALIBRATION1.parse(raw1)),
            dig_H1=h1,
            dig_H2=part2.dig_H2,
            dig_H3=part2.dig_H3,
            dig_H4=(part2.e4 << 4) | (part2.e5 & 0x0F),
            dig_H5=(part2.e6 << 4) | (part2.e5 >> 4),
            dig_H6=part2.dig_H6,
        )
        return raw1 + bytes([h1]) + raw2, calibration

    def supports_humidity(self) -> bool:
        return True

    def read_humidity_rh(self, accuracy: Accuracy) -> Tuple[bool, float]:
        data = self._measure(accuracy)
        if data.hum_raw == SKIPPED_16BIT:
            raise SensorError("Humidity channel returned the skipped marker")
        _, t_fine = compensate_temperature(self.calibration(), data.temp_raw)
        return True, compensate_humidity(self.calibration(), data.hum_raw, t_fine)

    def _configure(self, osrs: int) -> None:
        # ctrl_hum only takes effect after the following ctrl_meas write
        self._write_byte(REG_CTRL_HUM, OSRS_CODE[osrs])

    def _measurement_time_ms(self, osrs: int) -> float:
        return super()._measurement_time_ms(osrs) + 2.3 * osrs + 0.575

    def _data_length(self) -> int:
        return 8

    def _parse_measurement(self, raw: bytes):
        return MEASUREMENT_HUMIDITY.parse(raw)
