"""
Command Catalog

Per-device table of firmware commands with their declared input and
output line counts.

Boards report command signatures like:
    getKW>1
    EPw>2
    EPr>1<1
where the leading identifier is the base command, ">N" declares N
output lines and "<M" declares M input lines.
"""

import re
from dataclasses import dataclass

from energy_console.common.config import DeviceKind

BASE_NAME_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)")
OUTPUT_ARITY_RE = re.compile(r">(\d+)")
INPUT_ARITY_RE = re.compile(r"<(\d+)")

# Firmware sends this token after the last command
END_OF_COMMANDS = "eoc"


@dataclass(frozen=True)
class CommandDescriptor:
    """One firmware command"""
    name: str
    input_arity: int = 0
    output_arity: int = 0
    signature: str = ""

    @property
    def is_mutating(self) -> bool:
        """set* commands change hardware state"""
        return self.name.lower().startswith("set")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "input_arity": self.input_arity,
            "output_arity": self.output_arity,
            "signature": self.signature or self.name,
        }


def parse_signature(line: str) -> CommandDescriptor | None:
    """
    Parse a firmware signature line.

    Returns:
        CommandDescriptor, or None when the line has no leading identifier
    """
    text = str(line or "").strip()
    match = BASE_NAME_RE.match(text)
    if not match:
        return None

    base = match.group(1)
    rest = text[len(base):]
    out_match = OUTPUT_ARITY_RE.search(rest)
    in_match = INPUT_ARITY_RE.search(rest)

    return CommandDescriptor(
        name=base,
        input_arity=int(in_match.group(1)) if in_match else 0,
        output_arity=int(out_match.group(1)) if out_match else 0,
        signature=text,
    )


class CommandCatalog:
    """
    Command table for one device.

    Descriptors are immutable once recorded; when the same base name is
    reported twice, the first signature wins.
    """

    def __init__(self, descriptors: list[CommandDescriptor] | None = None):
        self._commands: dict[str, CommandDescriptor] = {}
        for descriptor in descriptors or []:
            self.add(descriptor)

    @classmethod
    def from_signatures(cls, signatures: list[str]) -> "CommandCatalog":
        catalog = cls()
        for line in signatures:
            if str(line).strip().lower() == END_OF_COMMANDS:
                continue
            descriptor = parse_signature(line)
            if descriptor:
                catalog.add(descriptor)
        return catalog

    def add(self, descriptor: CommandDescriptor) -> bool:
        """Record a descriptor; returns False if the name already exists"""
        if descriptor.name in self._commands:
            return False
        self._commands[descriptor.name] = descriptor
        return True

    def get(self, name: str) -> CommandDescriptor | None:
        return self._commands.get(name)

    def names(self) -> list[str]:
        return list(self._commands)

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self):
        return iter(self._commands.values())

    def to_list(self) -> list[dict]:
        return [d.to_dict() for d in self._commands.values()]


# Hardcoded catalogs for boards whose enumerate handshake is unreliable.
# Arities follow the response prompts those firmwares print; sensor get*
# commands without a known prompt are assumed to return one line.
KNOWN_SIGNATURES: dict[DeviceKind, list[str]] = {
    DeviceKind.HOUSE_LOAD: [
        "init", "autoOn", "autoOff",
        "lightAll", "lightsOut", "light0", "light1", "light2", "light3",
        "blinkHouses", "chaseOn", "chaseOff",
        "setLimits<4", "setLoad<1", "setLight0<1", "setLight1<1", "setLight2<1", "setLight3<1",
        "getAll>7", "getLoads>4", "getLoadVal>1", "getKW>1", "getCarbon>1",
        "getTemp>1", "getHumidity>1", "getPressure>1", "getLandA>1",
        "EPw>2", "EPr>1<1", "off",
    ],
    DeviceKind.GENERATOR: [
        "init", "off", "runRange",
        "getAll>7", "getKW>1", "getVolts>1", "getRes>1", "getDrop>1", "getCarbon>1",
        "setLoad<1", "setVolts<1", "setMot<1", "setKp<1", "setKi<1", "setKd<1",
    ],
    DeviceKind.SOLAR_TRACKER: [
        "init", "runScan", "trackOn", "trackOff", "runIVScan",
        "goHome", "goMax", "go1Q", "go2Q", "go3Q", "go4Q",
        "moveCW<1", "moveCCW<1", "moveCWR<1", "moveCCWR<1", "lookCCW", "lookCW", "runCal",
        "setSteps<1", "setLoad<1", "setResis<1", "setRange<1", "setDelay<1", "setSpeed<1", "setReads<1",
        "getVal>1", "getKW>1", "getCarbon>1", "getMax>1", "getAll>7", "getIV>1", "getIVC>1",
        "getPos>1", "getBusy>1", "getMaxPos>1",
        "on", "off",
    ],
}


def known_catalog(kind: DeviceKind) -> CommandCatalog | None:
    """Hardcoded catalog for a device kind, if one exists"""
    signatures = KNOWN_SIGNATURES.get(kind)
    if signatures is None:
        return None
    return CommandCatalog.from_signatures(signatures)
