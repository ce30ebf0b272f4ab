"""Configuration loading, persistence stores and notifications"""

import pytest

from energy_console.common.config import ConsoleConfig, load_console_config, load_console_config_dict
from energy_console.common.exceptions import ConfigError
from energy_console.common.notifications import NotificationLevel, Notifier
from energy_console.common.state import KeyValueStore, MemoryStore, power_estimate_key


def test_defaults():
    config = load_console_config_dict({})

    assert config == ConsoleConfig()
    assert config.protocol.default_timeout_ms == 3000
    assert config.telemetry.interval_s == 5.0
    assert config.balance.auto_interval_s == 2.0
    assert config.balance.change_tolerance_kw == 0.01
    assert config.telemetry.outlier_filter_enabled is False


def test_overrides():
    config = load_console_config_dict({
        "serial": {"ports": "/dev/ttyUSB0", "baudrate": 9600},
        "telemetry": {"interval_s": 2, "outlier_filter_enabled": True},
        "http": {"port": 9000, "enabled": False},
        "log_level": "DEBUG",
    })

    assert config.serial.ports == ["/dev/ttyUSB0"]
    assert config.serial.baudrate == 9600
    assert config.telemetry.interval_s == 2
    assert config.telemetry.outlier_filter_enabled is True
    assert config.http.port == 9000
    assert not config.http.enabled
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "data",
    [
        {"serial": {"baudrate": 0}},
        {"serial": {"baudrate": "fast"}},
        {"protocol": {"default_timeout_ms": -1}},
        {"telemetry": {"interval_s": float("nan")}},
        {"balance": "on"},
    ],
)
def test_invalid_values(data):
    with pytest.raises(ConfigError):
        load_console_config_dict(data)


def test_load_from_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("serial:\n  ports: [/dev/ttyACM0]\nstate_dir: /tmp/state\n")

    config = load_console_config(str(path))

    assert config.serial.ports == ["/dev/ttyACM0"]
    assert config.state_dir == "/tmp/state"


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigError):
        load_console_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError):
        load_console_config(str(path))


def test_key_value_store_round_trip(tmp_path):
    store = KeyValueStore(tmp_path / "state")
    store.set("connections", [{"from_id": "dev:a", "to_id": "dev:b", "kw": 1.5}])

    assert store.get("connections") == [{"from_id": "dev:a", "to_id": "dev:b", "kw": 1.5}]
    # A fresh instance reads from disk
    assert KeyValueStore(tmp_path / "state").get("connections")[0]["kw"] == 1.5
    assert "connections" in store.keys()

    store.delete("connections")
    assert store.get("connections", []) == []


def test_key_value_store_hands_out_copies(tmp_path):
    store = KeyValueStore(tmp_path)
    store.set("history", [1])

    store.get("history").append(2)

    assert store.get("history") == [1]


def test_unreadable_state_file_returns_default(tmp_path):
    (tmp_path / "safe_mode.json").write_text("{not json")
    store = KeyValueStore(tmp_path)

    assert store.get("safe_mode", False) is False


def test_unsafe_key_characters(tmp_path):
    store = KeyValueStore(tmp_path)
    store.set(power_estimate_key("house/load 1"), {"rated_w": 100})

    assert store.get(power_estimate_key("house/load 1")) == {"rated_w": 100}


def test_memory_store_isolation():
    value = {"a": [1]}
    store = MemoryStore()
    store.set("k", value)
    value["a"].append(2)

    assert store.get("k") == {"a": [1]}


def test_notifier_is_bounded():
    notifier = Notifier(max_entries=2)
    notifier.notify("one")
    notifier.notify("two", NotificationLevel.WARNING)
    notifier.notify("three", NotificationLevel.ERROR)

    assert [n.message for n in notifier.entries()] == ["two", "three"]
    assert notifier.latest().to_dict()["level"] == "error"
    notifier.clear()
    assert notifier.latest() is None


def test_missing_explicit_file_does_not_fall_back(tmp_path, monkeypatch):
    fallback = tmp_path / "fallback.yaml"
    fallback.write_text("serial:\n  ports: [/dev/ttyUSB9]\n")
    monkeypatch.setenv("ENERGY_CONSOLE_CONFIG", str(fallback))
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ConfigError):
        load_console_config(str(tmp_path / "typo.yaml"))

    assert load_console_config().serial.ports == ["/dev/ttyUSB9"]
