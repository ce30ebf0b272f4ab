"""Echo handshake and *ID? identification"""

import time

from energy_console.services.device.discovery import discover_commands, identify


async def test_handshake_echoes_each_base_name(config, fake_transport_cls):
    transport = fake_transport_cls(responses={
        "getCommands": ["getKW>1"],
        "getKW": ["setLoad<1"],
        "setLoad": ["EPr>1<1"],
        "EPr": ["eoc"],
    })

    catalog = await discover_commands(transport, config.protocol)

    assert catalog.names() == ["getKW", "setLoad", "EPr"]
    assert catalog.get("EPr").signature == "EPr>1<1"
    assert transport.sent == ["getCommands", "getKW", "setLoad", "EPr"]


async def test_blank_reads_are_retried(config, fake_transport_cls):
    transport = fake_transport_cls(responses={
        "getCommands": ["", "", "getKW>1"],
        "getKW": ["eoc"],
    })

    catalog = await discover_commands(transport, config.protocol)

    assert catalog.names() == ["getKW"]


async def test_gives_up_with_partial_catalog(config, fake_transport_cls):
    # Firmware goes silent after the first signature
    transport = fake_transport_cls(responses={"getCommands": ["getKW>1"]})

    catalog = await discover_commands(transport, config.protocol)

    assert catalog.names() == ["getKW"]
    assert transport.sent == ["getCommands", "getKW"]


async def test_silent_board_yields_empty_catalog(config, fake_transport_cls):
    transport = fake_transport_cls()

    catalog = await discover_commands(transport, config.protocol)

    assert len(catalog) == 0


async def test_unparseable_line_is_echoed_verbatim(config, fake_transport_cls):
    transport = fake_transport_cls(responses={
        "getCommands": ["??"],
        "??": ["getVolts>1"],
        "getVolts": ["eoc"],
    })

    catalog = await discover_commands(transport, config.protocol)

    assert catalog.names() == ["getVolts"]
    assert transport.sent == ["getCommands", "??", "getVolts"]


async def test_command_ceiling(config, fake_transport_cls):
    config.protocol.discovery_max_commands = 2
    transport = fake_transport_cls(responses={
        "getCommands": ["a>1"],
        "a": ["b>1"],
        "b": ["c>1"],
        "c": ["eoc"],
    })

    catalog = await discover_commands(transport, config.protocol)

    assert catalog.names() == ["a", "b"]


async def test_identify(fake_transport_cls):
    transport = fake_transport_cls(id_reply="generator2")

    assert await identify(transport, 100) == "generator2"
    assert transport.sent == ["*ID?"]


async def test_identify_silent_board(fake_transport_cls):
    assert await identify(fake_transport_cls(), 20) == ""


async def test_line_endings_are_stripped(config, fake_transport_cls):
    transport = fake_transport_cls(responses={
        "getCommands": ["getKW>1\r"],
        "getKW": [" eoc\r\n"],
    }, id_reply="generator\r")

    catalog = await discover_commands(transport, config.protocol)

    assert catalog.names() == ["getKW"]
    assert transport.sent == ["getCommands", "getKW"]
    assert await identify(transport, timeout_ms=50) == "generator"


async def test_overall_deadline_without_eoc(config, fake_transport_cls):
    # A board that keeps offering new commands and never sends eoc
    responses = {"getCommands": ["cmd0"]}
    responses.update({f"cmd{i}": [f"cmd{i + 1}"] for i in range(200)})
    transport = fake_transport_cls(responses=responses)
    config.protocol.discovery_timeout_s = 0.2
    config.protocol.discovery_echo_delay_ms = 20

    started = time.monotonic()
    catalog = await discover_commands(transport, config.protocol)
    elapsed = time.monotonic() - started

    assert 1 <= len(catalog) < 50
    assert elapsed < 1.0
    assert catalog.names() == [f"cmd{i}" for i in range(len(catalog))]
