import pytest

from fakes import FakeSensor
from sensors import SensorError


@pytest.fixture
def fake_sensor():
    return FakeSensor()


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip conversion waits in the drivers."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)


@pytest.fixture
def read_error():
    return SensorError("Failed to read register 0xf7: [Errno 121] Remote I/O error")
