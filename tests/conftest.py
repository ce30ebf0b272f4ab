"""
Shared fixtures: an in-memory line transport, fast protocol timings and
ready-made device records.
"""

import asyncio

import pytest

from energy_console.common.config import (
    BalanceSettings,
    ConsoleConfig,
    DeviceKind,
    DeviceRole,
    HttpSettings,
    ProtocolSettings,
    SerialSettings,
    TelemetrySettings,
)
from energy_console.common.exceptions import TransportError
from energy_console.common.notifications import Notifier
from energy_console.common.state import MemoryStore
from energy_console.services.device import DeviceService
from energy_console.services.device.catalog import CommandCatalog
from energy_console.services.device.models import ConnectionState, DeviceRecord


class FakeLineTransport:
    """
    Scripted line transport.

    Every sent line is recorded. When a sent line matches a key of
    responses, its reply lines are queued for read_line. A read with
    nothing queued blocks until the caller's deadline expires.
    """

    def __init__(self, name="fake0", responses=None, id_reply=None, send_delay_s=0.0):
        self.name = name
        self.responses = dict(responses or {})
        if id_reply is not None:
            self.responses["*ID?"] = [id_reply]
        self.send_delay_s = send_delay_s
        self.sent: list[str] = []
        self.reads = 0
        self.resets = 0
        self.closed = False
        self._open = True
        self._inbound: asyncio.Queue[str] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False
        self.closed = True

    async def send_line(self, line: str) -> None:
        if not self._open:
            raise TransportError(f"{self.name} is not open", port=self.name)
        if self.send_delay_s:
            await asyncio.sleep(self.send_delay_s)
        self.sent.append(line)
        for reply in self.responses.get(line, []):
            self._inbound.put_nowait(reply)

    async def read_line(self) -> str:
        line = await self._inbound.get()
        self.reads += 1
        return line

    def feed(self, *lines: str) -> None:
        for line in lines:
            self._inbound.put_nowait(line)

    def reset_input(self) -> None:
        while not self._inbound.empty():
            self._inbound.get_nowait()
        self.resets += 1


@pytest.fixture
def fake_transport_cls():
    return FakeLineTransport


@pytest.fixture
def config():
    """Console config with timings shrunk for tests"""
    return ConsoleConfig(
        serial=SerialSettings(ports=[], settle_delay_s=0, identify_timeout_ms=100),
        protocol=ProtocolSettings(
            default_timeout_ms=100,
            inter_arg_delay_ms=0,
            discovery_timeout_s=2,
            discovery_first_read_delay_ms=0,
            discovery_first_read_timeout_ms=100,
            discovery_read_timeout_ms=30,
            discovery_blank_retry_delay_ms=0,
            discovery_max_blank_reads=3,
            discovery_echo_delay_ms=0,
        ),
        telemetry=TelemetrySettings(interval_s=60, inter_device_delay_ms=0, inter_command_delay_ms=0),
        balance=BalanceSettings(auto_interval_s=60),
        http=HttpSettings(enabled=False),
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def device_service(config, store, notifier):
    return DeviceService(config, store, notifier)


@pytest.fixture
def make_device(device_service):
    """
    Register a connected device backed by a FakeLineTransport.

    Returns (record, transport).
    """

    def _make(
        name,
        signatures,
        kind=DeviceKind.UNKNOWN,
        role=DeviceRole.CONSUMER,
        responses=None,
        connected=True,
        send_delay_s=0.0,
    ):
        transport = FakeLineTransport(name=f"/dev/{name}", responses=responses, send_delay_s=send_delay_s)
        record = DeviceRecord(
            device_id=f"dev:{name}",
            name=name,
            kind=kind,
            role=role,
            catalog=CommandCatalog.from_signatures(signatures),
            transport=transport,
            port=transport.name,
            state=ConnectionState.CONNECTED if connected else ConnectionState.AVAILABLE,
        )
        device_service.registry.register(record)
        return record, transport

    return _make
