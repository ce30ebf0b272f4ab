"""Arity-driven command calls"""

import asyncio

import pytest

from energy_console.common.config import ProtocolSettings
from energy_console.common.exceptions import ProtocolTimeout, UnknownCommand, ValidationError
from energy_console.services.device.catalog import CommandCatalog
from energy_console.services.device.invoker import Invoker, timed_out


@pytest.fixture
def invoker():
    return Invoker(ProtocolSettings(default_timeout_ms=50, inter_arg_delay_ms=0))


async def test_no_arity_command_sends_one_line(invoker, fake_transport_cls):
    transport = fake_transport_cls()
    catalog = CommandCatalog.from_signatures(["init"])

    result = await invoker.call(transport, catalog, "init")

    assert result is None
    assert transport.sent == ["init"]
    assert transport.reads == 0


async def test_one_in_one_out(invoker, fake_transport_cls):
    transport = fake_transport_cls(responses={"EPr": ["42"]})
    catalog = CommandCatalog.from_signatures(["EPr>1<1"])

    result = await invoker.call(transport, catalog, "EPr", ["7"])

    assert result == ["42"]
    assert transport.sent == ["EPr", "7"]
    assert transport.reads == 1


async def test_reads_exactly_output_arity(invoker, fake_transport_cls):
    transport = fake_transport_cls(responses={"EPw": ["first", "second", "extra"]})
    catalog = CommandCatalog.from_signatures(["EPw>2"])

    assert await invoker.call(transport, catalog, "EPw") == ["first", "second"]
    assert transport.reads == 2


async def test_input_only_command_returns_none(invoker, fake_transport_cls):
    transport = fake_transport_cls()
    catalog = CommandCatalog.from_signatures(["setLoad<1"])

    assert await invoker.call(transport, catalog, "setLoad", [2.5]) is None
    assert transport.sent == ["setLoad", "2.5"]


async def test_unknown_command_does_no_io(invoker, fake_transport_cls):
    transport = fake_transport_cls()
    catalog = CommandCatalog.from_signatures(["getKW>1"])

    with pytest.raises(UnknownCommand):
        await invoker.call(transport, catalog, "getVolts")
    assert transport.sent == []


async def test_missing_arguments_rejected(invoker, fake_transport_cls):
    transport = fake_transport_cls()
    catalog = CommandCatalog.from_signatures(["setLimits<4"])

    with pytest.raises(ValidationError):
        await invoker.call(transport, catalog, "setLimits", ["1", "2"])
    assert transport.sent == []


async def test_read_deadline(invoker, fake_transport_cls):
    transport = fake_transport_cls()
    catalog = CommandCatalog.from_signatures(["getKW>1"])

    with pytest.raises(ProtocolTimeout) as excinfo:
        await invoker.call(transport, catalog, "getKW", timeout_ms=20)

    assert excinfo.value.label == "getKW read"
    assert timed_out(excinfo.value)
    assert transport.sent == ["getKW"]


async def test_late_reply_is_dropped_after_timeout(invoker, fake_transport_cls):
    transport = fake_transport_cls(responses={"getVolts": ["24"]})
    catalog = CommandCatalog.from_signatures(["getKW>1", "getVolts>1"])
    asyncio.get_running_loop().call_later(0.04, transport.feed, "5.0")

    with pytest.raises(ProtocolTimeout):
        await invoker.call(transport, catalog, "getKW", timeout_ms=20)

    assert transport.resets == 1
    assert await invoker.call(transport, catalog, "getVolts") == ["24"]


async def test_no_late_reply_window(fake_transport_cls):
    invoker = Invoker(ProtocolSettings(default_timeout_ms=20, late_reply_window_ms=0))
    transport = fake_transport_cls()
    transport.feed("only-one")
    catalog = CommandCatalog.from_signatures(["getKW>2"])

    with pytest.raises(ProtocolTimeout):
        await invoker.call(transport, catalog, "getKW")

    assert transport.resets == 1
    assert transport.reads == 1
