"""
Configuration Dataclasses

Type-safe configuration structures for the console.
Loaded from a YAML file; every section falls back to defaults.
"""

import math
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError


class DeviceRole(str, Enum):
    """Power role of a device in the supply/demand picture"""
    PROVIDER = "provider"
    CONSUMER = "consumer"


class DeviceKind(str, Enum):
    """Hardware module kinds reported by the *ID? handshake"""
    GENERATOR = "generator"
    SOLAR_TRACKER = "solartracker"
    WIND_TURBINE = "windturbine"
    HOUSE_LOAD = "houseload"
    FAN = "fan"
    CVT = "cvt"
    UNKNOWN = "unknown"


class CommandStatus(str, Enum):
    """Last-invocation status shown on a device record"""
    RUNNING = "RUNNING"
    OK = "OK"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"
    BLOCKED = "BLOCKED"


@dataclass
class SerialSettings:
    """Serial ports to open at startup"""
    ports: list[str] = field(default_factory=list)
    baudrate: int = 115200
    settle_delay_s: float = 2.0  # Boards reset when the port opens
    identify_timeout_ms: int = 2000


@dataclass
class ProtocolSettings:
    """Line protocol timing"""
    default_timeout_ms: int = 3000
    inter_arg_delay_ms: int = 50
    late_reply_window_ms: int = 200
    discovery_timeout_s: float = 20.0
    discovery_first_read_delay_ms: int = 300
    discovery_first_read_timeout_ms: int = 3000
    discovery_read_timeout_ms: int = 2000
    discovery_blank_retry_delay_ms: int = 250
    discovery_max_blank_reads: int = 50
    discovery_echo_delay_ms: int = 100
    discovery_max_commands: int = 128


@dataclass
class TelemetrySettings:
    """Telemetry poller settings"""
    interval_s: float = 5.0
    inter_device_delay_ms: int = 300
    inter_command_delay_ms: int = 100
    outlier_filter_enabled: bool = False
    history_size: int = 5
    max_change_pct: float = 200.0
    abs_threshold: float = 50.0


@dataclass
class BalanceSettings:
    """Mode 2 controller settings"""
    auto_interval_s: float = 2.0
    change_tolerance_kw: float = 0.01


@dataclass
class HttpSettings:
    """HTTP state/command server"""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8090


@dataclass
class ConsoleConfig:
    """Complete console configuration"""
    serial: SerialSettings = field(default_factory=SerialSettings)
    protocol: ProtocolSettings = field(default_factory=ProtocolSettings)
    telemetry: TelemetrySettings = field(default_factory=TelemetrySettings)
    balance: BalanceSettings = field(default_factory=BalanceSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    state_dir: str = "data/state"
    log_level: str = "INFO"


def _positive(section: str, key: str, value: Any, allow_zero: bool = True) -> float:
    """Validate a non-negative finite number"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if not math.isfinite(number) or number < 0 or (number == 0 and not allow_zero):
        raise ConfigError(f"{section}.{key} out of range: {value!r}")
    return number


def _section(data: dict, name: str) -> dict:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return value


def load_console_config_dict(data: dict) -> ConsoleConfig:
    """Load ConsoleConfig from dictionary (e.g., parsed YAML)"""
    defaults = ConsoleConfig()

    serial_data = _section(data, "serial")
    ports = serial_data.get("ports", [])
    if isinstance(ports, str):
        ports = [ports]
    serial = SerialSettings(
        ports=[str(p) for p in ports],
        baudrate=int(_positive("serial", "baudrate", serial_data.get("baudrate", defaults.serial.baudrate), False)),
        settle_delay_s=_positive("serial", "settle_delay_s", serial_data.get("settle_delay_s", defaults.serial.settle_delay_s)),
        identify_timeout_ms=int(_positive("serial", "identify_timeout_ms", serial_data.get("identify_timeout_ms", defaults.serial.identify_timeout_ms), False)),
    )

    protocol_data = _section(data, "protocol")
    p = defaults.protocol
    protocol = ProtocolSettings(
        default_timeout_ms=int(_positive("protocol", "default_timeout_ms", protocol_data.get("default_timeout_ms", p.default_timeout_ms), False)),
        inter_arg_delay_ms=int(_positive("protocol", "inter_arg_delay_ms", protocol_data.get("inter_arg_delay_ms", p.inter_arg_delay_ms))),
        late_reply_window_ms=int(_positive("protocol", "late_reply_window_ms", protocol_data.get("late_reply_window_ms", p.late_reply_window_ms))),
        discovery_timeout_s=_positive("protocol", "discovery_timeout_s", protocol_data.get("discovery_timeout_s", p.discovery_timeout_s), False),
        discovery_first_read_delay_ms=int(_positive("protocol", "discovery_first_read_delay_ms", protocol_data.get("discovery_first_read_delay_ms", p.discovery_first_read_delay_ms))),
        discovery_first_read_timeout_ms=int(_positive("protocol", "discovery_first_read_timeout_ms", protocol_data.get("discovery_first_read_timeout_ms", p.discovery_first_read_timeout_ms), False)),
        discovery_read_timeout_ms=int(_positive("protocol", "discovery_read_timeout_ms", protocol_data.get("discovery_read_timeout_ms", p.discovery_read_timeout_ms), False)),
        discovery_blank_retry_delay_ms=int(_positive("protocol", "discovery_blank_retry_delay_ms", protocol_data.get("discovery_blank_retry_delay_ms", p.discovery_blank_retry_delay_ms))),
        discovery_max_blank_reads=int(_positive("protocol", "discovery_max_blank_reads", protocol_data.get("discovery_max_blank_reads", p.discovery_max_blank_reads), False)),
        discovery_echo_delay_ms=int(_positive("protocol", "discovery_echo_delay_ms", protocol_data.get("discovery_echo_delay_ms", p.discovery_echo_delay_ms))),
        discovery_max_commands=int(_positive("protocol", "discovery_max_commands", protocol_data.get("discovery_max_commands", p.discovery_max_commands), False)),
    )

    telemetry_data = _section(data, "telemetry")
    t = defaults.telemetry
    telemetry = TelemetrySettings(
        interval_s=_positive("telemetry", "interval_s", telemetry_data.get("interval_s", t.interval_s), False),
        inter_device_delay_ms=int(_positive("telemetry", "inter_device_delay_ms", telemetry_data.get("inter_device_delay_ms", t.inter_device_delay_ms))),
        inter_command_delay_ms=int(_positive("telemetry", "inter_command_delay_ms", telemetry_data.get("inter_command_delay_ms", t.inter_command_delay_ms))),
        outlier_filter_enabled=bool(telemetry_data.get("outlier_filter_enabled", t.outlier_filter_enabled)),
        history_size=int(_positive("telemetry", "history_size", telemetry_data.get("history_size", t.history_size), False)),
        max_change_pct=_positive("telemetry", "max_change_pct", telemetry_data.get("max_change_pct", t.max_change_pct), False),
        abs_threshold=_positive("telemetry", "abs_threshold", telemetry_data.get("abs_threshold", t.abs_threshold)),
    )

    balance_data = _section(data, "balance")
    balance = BalanceSettings(
        auto_interval_s=_positive("balance", "auto_interval_s", balance_data.get("auto_interval_s", defaults.balance.auto_interval_s), False),
        change_tolerance_kw=_positive("balance", "change_tolerance_kw", balance_data.get("change_tolerance_kw", defaults.balance.change_tolerance_kw)),
    )

    http_data = _section(data, "http")
    http = HttpSettings(
        enabled=bool(http_data.get("enabled", defaults.http.enabled)),
        host=str(http_data.get("host", defaults.http.host)),
        port=int(_positive("http", "port", http_data.get("port", defaults.http.port), False)),
    )

    return ConsoleConfig(
        serial=serial,
        protocol=protocol,
        telemetry=telemetry,
        balance=balance,
        http=http,
        state_dir=str(data.get("state_dir", defaults.state_dir)),
        log_level=str(data.get("log_level", defaults.log_level)),
    )


def find_config_path(explicit: str | None = None) -> Path | None:
    """Find configuration file (an explicit path must exist)"""
    if explicit:
        if not Path(explicit).exists():
            raise ConfigError(f"Configuration file not found: {explicit}")
        return Path(explicit)

    possible_paths = [
        os.environ.get("ENERGY_CONSOLE_CONFIG"),
        "/etc/energy-console/config.yaml",
        "config.yaml",
    ]

    for path in possible_paths:
        if path and Path(path).exists():
            return Path(path)

    return None


def load_console_config(path: str | None = None) -> ConsoleConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Optional explicit path; otherwise the standard locations are searched

    Returns:
        ConsoleConfig (defaults when no file exists)
    """
    config_path = find_config_path(path)
    if config_path is None:
        return ConsoleConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    return load_console_config_dict(data)
