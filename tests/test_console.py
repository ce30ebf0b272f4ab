"""Coordinator lifecycle and the command-line entry points"""

import json

import pytest

from energy_console import cli
from energy_console.common.notifications import NotificationLevel
from energy_console.console import EnergyConsole
from energy_console.main import run

GET_ALL_LINES = ["a 0", "b 0", "c 0", "d 0", "e 0", "f 0", "kw 1.0"]


@pytest.fixture
def generator_factory(fake_transport_cls):
    wires = []

    def factory(port):
        wire = fake_transport_cls(
            name=port,
            id_reply="generator",
            responses={"getAll": GET_ALL_LINES, "getKW": ["1.0"], "getVolts": ["24"]},
        )
        wires.append(wire)
        return wire

    factory.wires = wires
    return factory


async def test_start_sweep_stop(config, store, generator_factory):
    config.serial.ports = ["/dev/fake0"]
    console = EnergyConsole(config, store=store, transport_factory=generator_factory)

    await console.start(serve_http=False)
    try:
        assert console.is_running
        assert [d.name for d in console.devices.registry.connected()] == ["generator"]
        assert console.notifier.latest().level == NotificationLevel.SUCCESS

        samples = await console.telemetry.sweep()

        assert samples["dev:generator"].kw == 1.0
        assert samples["dev:generator"].volts == 24
        assert console.balance.summary.supply_kw == 1.0
        assert console.get_status()["connected"] == 1
    finally:
        await console.stop()

    assert not console.is_running
    assert len(console.devices.registry) == 0
    assert generator_factory.wires[0].closed


async def test_unopenable_port_is_reported(config, store):
    from energy_console.common.exceptions import TransportError

    def broken(port):
        raise TransportError(f"Cannot open {port}", port=port)

    config.serial.ports = ["/dev/missing"]
    console = EnergyConsole(config, store=store, transport_factory=broken)

    await console.start(serve_http=False)
    await console.stop()

    assert console.notifier.latest().level == NotificationLevel.ERROR


async def test_cli_call(config, generator_factory):
    result = await cli.call_command(config, "/dev/fake0", "getKW", [], transport_factory=generator_factory)

    assert result["success"] is True
    assert result["device"] == "generator"
    assert result["result"] == ["1.0"]
    json.dumps(result)


async def test_cli_call_unknown_command(config, generator_factory):
    result = await cli.call_command(config, "/dev/fake0", "fly", [], transport_factory=generator_factory)

    assert result["success"] is False
    assert "fly" in result["error"]


async def test_cli_discover(config, fake_transport_cls):
    def factory(port):
        return fake_transport_cls(
            name=port,
            id_reply="fan",
            responses={"getCommands": ["getKW>1"], "getKW": ["setSpeed<1"], "setSpeed": ["eoc"]},
        )

    result = await cli.discover_port(config, "/dev/fake1", transport_factory=factory)

    assert result["success"] is True
    assert result["device"]["name"] == "fan"
    assert [c["name"] for c in result["device"]["commands"]] == ["getKW", "setSpeed"]


def test_cli_parser():
    args = cli.build_parser().parse_args(["call", "--port", "/dev/ttyUSB0", "setLoad", "2.5"])

    assert args.command == "call"
    assert args.name == "setLoad"
    assert args.values == ["2.5"]
    assert args.timeout_ms is None


def test_dry_run(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("serial:\n  ports: [/dev/ttyUSB3]\n")

    assert run(str(path), dry_run=True) == 0

    out = capsys.readouterr().out
    assert "/dev/ttyUSB3" in out
    assert "Dry run" in out


def test_bad_config_exit_code(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("serial:\n  baudrate: -1\n")

    assert run(str(path), dry_run=True) == 1
