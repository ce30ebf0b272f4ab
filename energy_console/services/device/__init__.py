"""
Device Service (Layer 1) - Serial Command Protocol

Responsibilities:
- Open serial ports and identify boards (*ID?)
- Enumerate command catalogs (getCommands echo handshake)
- Invoke commands by declared arity with per-operation deadlines
- Serialize calls per device
- Gate set* commands behind safe mode and log every request
"""

from .catalog import CommandCatalog, CommandDescriptor, parse_signature
from .command_log import CommandLog, CommandLogEntry
from .device_manager import DeviceRegistry
from .device_queue import DeviceQueue
from .executor import CommandExecutor, SafetyInterlock
from .invoker import Invoker
from .models import ConnectionState, DeviceRecord
from .service import DeviceService

__all__ = [
    "CommandCatalog",
    "CommandDescriptor",
    "parse_signature",
    "CommandLog",
    "CommandLogEntry",
    "DeviceRegistry",
    "DeviceQueue",
    "CommandExecutor",
    "SafetyInterlock",
    "Invoker",
    "ConnectionState",
    "DeviceRecord",
    "DeviceService",
]
