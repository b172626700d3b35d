import logging
import struct

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from collector import EnvironmentCollector
from fakes import FakeBus
from sensors import Accuracy, SensorError
from sensors.bmp180 import (
    BMP180Sensor,
    Bmp180Calibration,
    compensate_pressure,
    compensate_temperature,
    compute_b5,
)


# Worked example from the BMP180 datasheet, section 3.5
DATASHEET = (408, -72, -14383, 32741, 32757, 23153, 6190, 4, -32768, -8711, 2868)
UT = 27898
UP = 23843


def make_bus(ut=UT, up=UP):
    """Bus that answers conversion commands like the device does."""

    def on_write(bus, register, value):
        if register != 0xF4:
            return
        if value == 0x2E:
            bus.load(0xF6, struct.pack(">H", ut))
        else:
            oss = value >> 6
            bus.load(0xF6, (up << (8 - oss)).to_bytes(3, "big"))
        # Conversion finished: start-of-conversion bit cleared
        bus.registers[0xF4] = value & ~0x20

    bus = FakeBus({0xD0: 0x55}, on_write=on_write)
    bus.load(0xAA, struct.pack(">hhhHHHhhhhh", *DATASHEET))
    return bus


@pytest.fixture
def calibration():
    return Bmp180Calibration(*DATASHEET)


def test_compensate_temperature_datasheet(calibration):
    assert compute_b5(calibration, UT) == 2399
    assert compensate_temperature(calibration, UT) == 15.0


def test_compensate_pressure_datasheet(calibration):
    b5 = compute_b5(calibration, UT)
    assert compensate_pressure(calibration, UP, b5, 0) == 69964.0


def test_read_from_device(no_sleep):
    sensor = BMP180Sensor(make_bus())

    assert sensor.read_temperature_c(Accuracy.HIGH) == 15.0
    assert sensor.read_pressure_pa(Accuracy.ULTRA_LOW) == 69964.0


def test_pressure_command_uses_oversampling(no_sleep):
    bus = make_bus()
    BMP180Sensor(bus).read_pressure_pa(Accuracy.HIGH)

    # temperature first (B5), then pressure with oss=2
    assert bus.writes == [(0xF4, 0x2E), (0xF4, 0x34 + (2 << 6))]


def test_conversion_still_running(no_sleep):
    bus = make_bus()
    bus.on_write = None

    with pytest.raises(SensorError):
        BMP180Sensor(bus).read_temperature_c(Accuracy.HIGH)


def test_no_humidity():
    assert BMP180Sensor(make_bus()).supports_humidity() is False


def test_validate_coefficients_accepts_datasheet_values():
    BMP180Sensor(make_bus()).validate_coefficients()


@pytest.mark.parametrize("word", [b"\x00\x00", b"\xff\xff"])
def test_validate_coefficients_rejects_bad_word(word):
    bus = make_bus()
    bus.load(0xAA + 6, word)

    with pytest.raises(SensorError) as excinfo:
        BMP180Sensor(bus).validate_coefficients()
    assert "0xb0" in str(excinfo.value)


def test_validate_coefficients_read_failure():
    bus = make_bus()
    bus.failing.add(0xAA)

    with pytest.raises(SensorError):
        BMP180Sensor(bus).validate_coefficients()


# UT for which X1 + MD is zero with the datasheet calibration
UT_ZERO_DIVISOR = 20285


def test_compute_b5_zero_divisor(calibration):
    with pytest.raises(SensorError):
        compute_b5(calibration, UT_ZERO_DIVISOR)


def test_compensate_pressure_below_offset(calibration):
    b5 = compute_b5(calibration, UT)

    # B3 is 422 for the datasheet values at oss=0
    with pytest.raises(SensorError):
        compensate_pressure(calibration, 100, b5, 0)


def test_scrape_survives_compensation_failure(no_sleep, caplog):
    registry = CollectorRegistry()
    registry.register(EnvironmentCollector(BMP180Sensor(make_bus(ut=UT_ZERO_DIVISOR)), "BME180", "attic"))

    with caplog.at_level(logging.ERROR):
        output = generate_latest(registry).decode()

    assert "temperature{" not in output
    assert "pressure{" not in output
    errors = [r.getMessage() for r in caplog.records if r.levelno >= logging.ERROR]
    assert errors == [
        f"Problem reading temperature: Temperature compensation divided by zero (UT={UT_ZERO_DIVISOR})",
        f"Problem reading pressure: Temperature compensation divided by zero (UT={UT_ZERO_DIVISOR})",
    ]
