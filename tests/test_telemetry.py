"""Sanitizer, outlier filter and the polling sweep"""

import math

import pytest

from energy_console.services.telemetry import TelemetryPoller
from energy_console.services.telemetry.sanitizer import (
    KW,
    VOLTS,
    OutlierFilter,
    first_number,
    number_at_line,
    sanitize,
)


@pytest.mark.parametrize(
    "field, value, expected",
    [
        (VOLTS, 0, 0.0),
        (VOLTS, 1000, 1000.0),
        (VOLTS, 12.6, 12.6),
        (VOLTS, -0.1, None),
        (VOLTS, 1000.5, None),
        (KW, -1000, -1000.0),
        (KW, 1000, 1000.0),
        (KW, 1000.01, None),
        (KW, -1200, None),
        (KW, math.nan, None),
        (KW, math.inf, None),
        (KW, None, None),
        (KW, "abc", None),
    ],
)
def test_sanitize_bounds(field, value, expected):
    assert sanitize(field, value) == expected


def test_number_extraction():
    assert first_number("Volts: 12.5V") == 12.5
    assert first_number(["kW -0.75", "ignored 9"]) == -0.75
    assert first_number(["no digits"]) is None
    assert first_number([]) is None
    assert number_at_line(["a 1", "b 2", "c 3.5"], -1) == 3.5
    assert number_at_line(["a 1"], 4) is None
    assert number_at_line("a 1", 0) is None


def test_outlier_percentage_rule():
    flt = OutlierFilter(history_size=5, max_change_pct=200, abs_threshold=50)
    for value in (100, 100, 100):
        assert flt.apply("dev:a", KW, value) == value

    # +300% from the average is rejected, +150% is accepted
    assert flt.apply("dev:a", KW, 400) == 100
    assert flt.apply("dev:a", KW, 250) == 250
    assert flt.history("dev:a", KW) == [100, 100, 100, 250]


def test_outlier_absolute_rule_near_zero():
    flt = OutlierFilter(abs_threshold=50)
    flt.apply("dev:a", KW, 0)
    flt.apply("dev:a", KW, 2)

    assert flt.apply("dev:a", KW, 60) == 2
    assert flt.apply("dev:a", KW, 40) == 40


def test_outlier_negative_volts_keep_last_good():
    flt = OutlierFilter()
    flt.apply("dev:a", VOLTS, 12)

    assert flt.apply("dev:a", VOLTS, -3) == 12
    assert flt.apply("dev:a", VOLTS, None) is None


def test_outlier_history_is_bounded_and_per_device():
    flt = OutlierFilter(history_size=3)
    for value in (10, 11, 12, 13):
        flt.apply("dev:a", VOLTS, value)
    flt.apply("dev:b", VOLTS, 500)

    assert flt.history("dev:a", VOLTS) == [11, 12, 13]
    flt.clear("dev:a")
    assert flt.history("dev:a", VOLTS) == []
    assert flt.history("dev:b", VOLTS) == [500]


async def test_sweep_reads_supported_commands(device_service, config, make_device):
    device, transport = make_device(
        "generator",
        ["getKW>1", "getVolts>1", "setLoad<1"],
        responses={"getKW": ["kW: 2.5"], "getVolts": ["12.1 V"]},
    )
    poller = TelemetryPoller(device_service, config.telemetry)

    samples = await poller.sweep()

    sample = samples[device.device_id]
    assert sample.kw == 2.5
    assert sample.volts == 12.1
    assert transport.sent == ["getKW", "getVolts"]
    # Sweep reads stay out of the command log
    assert len(device_service.command_log) == 0


async def test_sweep_falls_back_to_get_all(device_service, config, make_device):
    device, _ = make_device("houseload", ["getAll>3"], responses={"getAll": ["l0 1", "l1 0", "kw 3.5"]})
    poller = TelemetryPoller(device_service, config.telemetry)

    sample = (await poller.sweep())[device.device_id]

    assert sample.kw == 3.5
    assert sample.raw_all == ["l0 1", "l1 0", "kw 3.5"]


async def test_out_of_range_values_become_none(device_service, config, make_device):
    device, _ = make_device("generator", ["getKW>1", "getVolts>1"], responses={"getKW": ["5000"], "getVolts": ["2000"]})
    poller = TelemetryPoller(device_service, config.telemetry)

    sample = (await poller.sweep())[device.device_id]

    assert sample.kw is None
    assert sample.volts is None
    assert sample.raw_volts == 2000


async def test_one_silent_device_does_not_stop_the_sweep(device_service, config, make_device):
    config.protocol.default_timeout_ms = 20
    silent, _ = make_device("fan", ["getKW>1"])
    good, _ = make_device("generator", ["getKW>1"], responses={"getKW": ["1.25"]})
    poller = TelemetryPoller(device_service, config.telemetry)
    seen = []
    poller.add_listener(seen.append)

    samples = await poller.sweep()

    assert samples[silent.device_id].kw is None
    assert samples[good.device_id].kw == 1.25
    assert seen == [samples]


async def test_device_without_telemetry_commands(device_service, config, make_device):
    device, transport = make_device("fan", ["init", "setLoad<1"])
    poller = TelemetryPoller(device_service, config.telemetry)

    sample = (await poller.sweep())[device.device_id]

    assert transport.sent == []
    assert sample.to_dict()["status"] == "no-telemetry-cmds"


async def test_disconnect_drops_sample(device_service, config, make_device):
    device, _ = make_device("generator", ["getKW>1"], responses={"getKW": ["1"]})
    poller = TelemetryPoller(device_service, config.telemetry)
    await poller.sweep()

    await device_service.disconnect(device.device_id)

    assert poller.sample(device.device_id) is None


async def test_pause_and_resume(device_service, config):
    poller = TelemetryPoller(device_service, config.telemetry)

    poller.pause()
    assert poller.paused
    poller.resume()
    assert not poller.paused


async def test_sweep_applies_outlier_filter_when_enabled(device_service, config, make_device):
    config.telemetry.outlier_filter_enabled = True
    generator, gen_wire = make_device("generator", ["getKW>1"])
    fan, fan_wire = make_device("fan", ["getKW>1"])
    poller = TelemetryPoller(device_service, config.telemetry)

    for gen_kw, fan_kw in [("100", "0.5"), ("110", "0.4"), ("105", "0.6")]:
        gen_wire.responses["getKW"] = [gen_kw]
        fan_wire.responses["getKW"] = [fan_kw]
        await poller.sweep()

    # 400 is ~280% off the 105 average; 60 kW is more than 50 kW off a near-zero history
    gen_wire.responses["getKW"] = ["400"]
    fan_wire.responses["getKW"] = ["60"]
    samples = await poller.sweep()

    assert samples[generator.device_id].raw_kw == 400
    assert samples[generator.device_id].kw == 105
    assert samples[fan.device_id].kw == 0.6
    assert poller.filter.history(generator.device_id, KW) == [100, 110, 105]

    gen_wire.responses["getKW"] = ["150"]
    samples = await poller.sweep()

    assert samples[generator.device_id].kw == 150
