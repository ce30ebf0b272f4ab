"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and YAML loader
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- state.py - Persistent key-value state
- scheduler.py - Fixed-interval async loops
- notifications.py - Operator notifications
"""

from .config import (
    ConsoleConfig,
    SerialSettings,
    ProtocolSettings,
    TelemetrySettings,
    BalanceSettings,
    HttpSettings,
    DeviceRole,
    DeviceKind,
    CommandStatus,
    load_console_config,
    load_console_config_dict,
)
from .exceptions import (
    ConsoleError,
    ConfigError,
    ValidationError,
    DeviceError,
    TransportError,
    ProtocolTimeout,
    UnknownCommand,
    SafetyBlocked,
    DisconnectedError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    set_log_level,
    log_command,
    log_telemetry,
    log_balance,
)
from .notifications import Notification, NotificationLevel, Notifier
from .scheduler import ScheduledLoop
from .state import KeyValueStore, MemoryStore

__all__ = [
    # Config
    "ConsoleConfig",
    "SerialSettings",
    "ProtocolSettings",
    "TelemetrySettings",
    "BalanceSettings",
    "HttpSettings",
    "DeviceRole",
    "DeviceKind",
    "CommandStatus",
    "load_console_config",
    "load_console_config_dict",
    # Exceptions
    "ConsoleError",
    "ConfigError",
    "ValidationError",
    "DeviceError",
    "TransportError",
    "ProtocolTimeout",
    "UnknownCommand",
    "SafetyBlocked",
    "DisconnectedError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "set_log_level",
    "log_command",
    "log_telemetry",
    "log_balance",
    # Notifications
    "Notification",
    "NotificationLevel",
    "Notifier",
    # Runtime
    "ScheduledLoop",
    "KeyValueStore",
    "MemoryStore",
]
