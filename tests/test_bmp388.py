import struct

import pytest

from fakes import FakeBus
from sensors import Accuracy, SensorError
from sensors.bmp388 import BMP388Sensor, compensate_pressure, compensate_temperature


# Representative calibration words; readings land near 26.6 C and 999 hPa
NVM = (27839, 19049, -7, -2483, -3395, 35, 0, 19304, 23660, 3, -6, 17121, 4, -14)
PRESS_RAW = 0x345000
TEMP_RAW = 0x83A300


def make_bus(status=0x70):
    bus = FakeBus({0x00: 0x50, 0x03: status})
    bus.load(0x31, struct.pack("<HHbhhbbHHbbhbb", *NVM))
    bus.load(0x04, PRESS_RAW.to_bytes(3, "little") + TEMP_RAW.to_bytes(3, "little"))
    return bus


def test_calibration_scaling():
    calibration = BMP388Sensor(make_bus()).calibration()

    assert calibration.T1 == 27839 * 256
    assert calibration.T2 == pytest.approx(19049 / 2 ** 30)
    assert calibration.P1 == pytest.approx((-2483 - 2 ** 14) / 2 ** 20)
    assert calibration.P5 == 19304 * 8
    assert calibration.P11 == pytest.approx(-14 / 2 ** 65)


def test_read_uses_little_endian_data(no_sleep):
    sensor = BMP388Sensor(make_bus())
    calibration = sensor.calibration()

    t_lin = compensate_temperature(calibration, TEMP_RAW)
    assert sensor.read_temperature_c(Accuracy.HIGH) == pytest.approx(t_lin)
    assert sensor.read_pressure_pa(Accuracy.HIGH) == pytest.approx(
        compensate_pressure(calibration, PRESS_RAW, t_lin)
    )


def test_readings_are_plausible(no_sleep):
    sensor = BMP388Sensor(make_bus())

    assert -40.0 < sensor.read_temperature_c(Accuracy.HIGH) < 85.0
    assert 30000.0 < sensor.read_pressure_pa(Accuracy.HIGH) < 125000.0


def test_forced_mode_configuration(no_sleep):
    bus = make_bus()
    BMP388Sensor(bus).read_pressure_pa(Accuracy.HIGH)

    # OSR: osr_t x1 (0), osr_p x8 (3); PWR_CTRL: press_en, temp_en, forced
    assert bus.writes == [(0x1C, 0x03), (0x1B, 0x13)]


def test_data_not_ready(no_sleep):
    with pytest.raises(SensorError):
        BMP388Sensor(make_bus(status=0x10)).read_temperature_c(Accuracy.HIGH)


def test_signature_register():
    assert BMP388Sensor(make_bus()).read_signature() == 0x50


def test_validate_coefficients():
    BMP388Sensor(make_bus()).validate_coefficients()


def test_validate_coefficients_rejects_zero_t1():
    bus = make_bus()
    bus.load(0x31, b"\x00\x00")

    with pytest.raises(SensorError):
        BMP388Sensor(bus).validate_coefficients()


def test_no_humidity(no_sleep):
    sensor = BMP388Sensor(make_bus())
    assert sensor.read_humidity_rh(Accuracy.HIGH) == (False, 0.0)
