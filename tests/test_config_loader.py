import pytest
import requests

from config_loader import DEFAULTS, ConfigError, ConfigLoader, parse_address, parse_bool


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.delenv("CONFIG_SERVER_URL", raising=False)
    monkeypatch.setenv("LOCAL_CONFIG_PATH", str(tmp_path / "config.yaml"))
    for key in DEFAULTS:
        monkeypatch.delenv("BME_EXPORTER_" + key.upper(), raising=False)


def test_defaults():
    config = ConfigLoader().load()

    assert config["i2c_address"] == 0x76
    assert config["i2c_bus"] == 1
    assert config["port"] == 8000
    assert config["model"] == "BME280"
    assert config["verbose"] is False
    assert config["health_port"] is None


def test_local_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("i2c_address: '0x77'\nmodel: BMP280\nport: 9105\n")

    config = ConfigLoader().load()

    assert config["i2c_address"] == 0x77
    assert config["model"] == "BMP280"
    assert config["port"] == 9105


def test_explicit_path_beats_env_path(tmp_path):
    path = tmp_path / "other.yaml"
    path.write_text("i2c_bus: 3\n")

    assert ConfigLoader(str(path)).load()["i2c_bus"] == 3


def test_empty_yaml_uses_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text("")
    assert ConfigLoader().load()["port"] == 8000


@pytest.mark.parametrize("content", ["port: [8000\n", "- just\n- a list\n"])
def test_bad_yaml(tmp_path, content):
    (tmp_path / "config.yaml").write_text(content)

    with pytest.raises(ConfigError):
        ConfigLoader().load()


def test_env_overrides_yaml(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text("port: 9105\nverbose: false\n")
    monkeypatch.setenv("BME_EXPORTER_PORT", "9200")
    monkeypatch.setenv("BME_EXPORTER_VERBOSE", "true")

    config = ConfigLoader().load()

    assert config["port"] == 9200
    assert config["verbose"] is True


def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("BME_EXPORTER_MODEL", "BMP280")

    config = ConfigLoader().load({"model": "BME388", "port": None, "i2c_address": "0x77"})

    assert config["model"] == "BME388"
    assert config["port"] == 8000
    assert config["i2c_address"] == 0x77


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Error")

    def json(self):
        return self.payload


def test_central_server(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_SERVER_URL", "http://config.local:8080")
    (tmp_path / "config.yaml").write_text("port: 9105\n")
    requested = []

    def fake_get(url, timeout):
        requested.append(url)
        return FakeResponse({"model": "BMP280", "port": 9000})

    monkeypatch.setattr(requests, "get", fake_get)
    loader = ConfigLoader()
    config = loader.load()

    assert requested == [f"http://config.local:8080/config/{loader.device_id}"]
    assert config["model"] == "BMP280"
    # local file still takes precedence
    assert config["port"] == 9105


@pytest.mark.parametrize(
    "response",
    [FakeResponse({}, status=500), FakeResponse(["not", "a", "mapping"])],
)
def test_central_server_failure_is_not_fatal(monkeypatch, response, caplog):
    monkeypatch.setenv("CONFIG_SERVER_URL", "http://config.local:8080")
    monkeypatch.setattr(requests, "get", lambda url, timeout: response)

    config = ConfigLoader().load()

    assert config["model"] == "BME280"
    assert "Failed to fetch from central server" in caplog.text


def test_central_server_unset_is_not_contacted(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("should not be called")

    monkeypatch.setattr(requests, "get", fail)
    ConfigLoader().load()


@pytest.mark.parametrize(
    "value,expected",
    [(0x76, 0x76), ("0x76", 0x76), ("0X77", 0x77), ("118", 118), (" 0x40 ", 0x40)],
)
def test_parse_address(value, expected):
    assert parse_address(value) == expected


@pytest.mark.parametrize("value", ["0x80", "-1", "zz", "", True, 300])
def test_parse_address_invalid(value):
    with pytest.raises(ConfigError):
        parse_address(value)


@pytest.mark.parametrize("value,expected", [("yes", True), ("0", False), (True, True), ("off", False)])
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected


def test_parse_bool_invalid():
    with pytest.raises(ConfigError):
        parse_bool("maybe")


@pytest.mark.parametrize(
    "overrides",
    [{"port": 0}, {"port": 70000}, {"port": "http"}, {"i2c_bus": -1}, {"health_port": 99999}],
)
def test_invalid_values(overrides):
    with pytest.raises(ConfigError):
        ConfigLoader().load(overrides)


def test_health_port_from_env(monkeypatch):
    monkeypatch.setenv("BME_EXPORTER_HEALTH_PORT", "8001")
    assert ConfigLoader().load()["health_port"] == 8001
