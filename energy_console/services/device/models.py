"""
Device Models

Device record kept by the registry, and helpers that derive a device's
kind and power role from the *ID? reply.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from energy_console.common.config import CommandStatus, DeviceKind, DeviceRole

from .catalog import CommandCatalog
from .transport import LineTransport


class ConnectionState(str, Enum):
    """Registry state of a device record"""
    AVAILABLE = "available"   # Identified, not polled or commanded
    CONNECTED = "connected"   # Participates in polling, commands and Mode 2


PROVIDER_KINDS = {DeviceKind.GENERATOR, DeviceKind.SOLAR_TRACKER, DeviceKind.WIND_TURBINE}
PROVIDER_NAME_HINTS = ("generator", "solar", "wind", "turbine", "tracker")

# Read-only commands the telemetry poller knows how to interpret
TELEMETRY_COMMANDS = (
    "getAll", "getKW", "getVolts", "getVal", "getBV",
    "getCurrent", "getRes", "getDrop", "getLoads", "getLoadVal",
)

_TRAILING_DIGITS_RE = re.compile(r"\d+$")


def base_kind_name(reply: str) -> str:
    """Strip trailing digits from an *ID? reply ("generator2" -> "generator")"""
    text = str(reply or "").strip()
    return _TRAILING_DIGITS_RE.sub("", text) or "unknown"


def kind_from_reply(reply: str) -> DeviceKind:
    base = base_kind_name(reply).lower()
    try:
        return DeviceKind(base)
    except ValueError:
        return DeviceKind.UNKNOWN


def infer_role(kind: DeviceKind, name: str) -> DeviceRole:
    """
    Provider for the supply-side kinds, or when the name hints at one.

    Name matching is a heuristic: renaming a device can change its role.
    """
    if kind in PROVIDER_KINDS:
        return DeviceRole.PROVIDER
    lowered = str(name or "").lower()
    if any(hint in lowered for hint in PROVIDER_NAME_HINTS):
        return DeviceRole.PROVIDER
    return DeviceRole.CONSUMER


def unique_name(wanted: str, taken: set[str]) -> str:
    """Append the lowest free integer suffix when a name is already used"""
    base = str(wanted or "").strip() or "device"
    if base not in taken:
        return base
    suffix = 1
    while f"{base}{suffix}" in taken:
        suffix += 1
    return f"{base}{suffix}"


@dataclass
class DeviceRecord:
    """One identified hardware module"""
    device_id: str
    name: str
    kind: DeviceKind
    role: DeviceRole
    catalog: CommandCatalog
    transport: LineTransport | None = None
    port: str = ""
    state: ConnectionState = ConnectionState.AVAILABLE

    # Last invocation bookkeeping
    last_command: str | None = None
    last_status: CommandStatus | None = None
    last_at: datetime | None = None
    last_set_load_kw: float | None = None

    discovered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def is_provider(self) -> bool:
        return self.role == DeviceRole.PROVIDER

    @property
    def is_generator(self) -> bool:
        """Generator detection is by display name"""
        return "generator" in self.name.lower()

    def supports(self, command: str) -> bool:
        return command in self.catalog

    def capabilities(self) -> dict[str, bool]:
        """Telemetry capability flags derived from the catalog"""
        return {name: name in self.catalog for name in TELEMETRY_COMMANDS}

    def mark(self, command: str, status: CommandStatus) -> None:
        self.last_command = command
        self.last_status = status
        self.last_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": self.device_id,
            "name": self.name,
            "kind": self.kind.value,
            "role": self.role.value,
            "port": self.port,
            "state": self.state.value,
            "commands": self.catalog.to_list(),
            "capabilities": self.capabilities(),
            "last_command": self.last_command,
            "last_status": self.last_status.value if self.last_status else None,
            "last_at": self.last_at.isoformat() if self.last_at else None,
            "last_set_load_kw": self.last_set_load_kw,
        }
