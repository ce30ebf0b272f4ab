"""Scripted flow runs"""

import pytest

from energy_console.common.exceptions import ValidationError
from energy_console.common.state import RUN_HISTORY_KEY
from energy_console.services.flow import Flow, FlowMode, FlowRunner, FlowStep, RunStatus


@pytest.fixture
def runner(device_service, store):
    return FlowRunner(device_service, store)


@pytest.fixture
def house(make_device):
    return make_device("houseload", ["light0", "getKW>1", "setLoad<1"], responses={"getKW": ["0.8"]})


async def test_run_once(runner, house, device_service):
    device, wire = house
    flow = Flow.from_dict({
        "steps": [
            {"device_id": device.device_id, "command": "light0"},
            {"device_id": device.device_id, "command": "setLoad", "args": "1.5"},
        ],
    })

    summary = await runner.run(flow)

    assert summary.status == RunStatus.OK
    assert summary.steps_done == 2
    assert summary.cycles_done == 1
    assert summary.last_step == "houseload.setLoad (1.5)"
    assert wire.sent == ["light0", "setLoad", "1.5"]

    metas = [e.meta for e in device_service.command_log.entries()]
    assert [m["step"] for m in metas] == [1, 2]
    assert all(m["flow"] == summary.id and m["total"] == 2 for m in metas)


async def test_loop_runs_each_cycle(runner, house):
    device, wire = house
    flow = Flow(
        steps=[FlowStep(device.device_id, "light0")],
        mode=FlowMode.LOOP,
        cycles=3,
    )

    summary = await runner.run(flow)

    assert summary.cycles_planned == 3
    assert summary.cycles_done == 3
    assert summary.steps_done == 3
    assert wire.sent == ["light0"] * 3


async def test_timeouts_are_counted_and_the_flow_continues(runner, make_device, config):
    config.protocol.default_timeout_ms = 20
    device, wire = make_device("fan", ["getKW>1", "init"])
    flow = Flow(steps=[FlowStep(device.device_id, "getKW"), FlowStep(device.device_id, "init")])

    summary = await runner.run(flow)

    assert summary.status == RunStatus.OK
    assert summary.timeout_count == 1
    assert summary.steps_done == 2


async def test_missing_device_aborts(runner, house, device_service):
    device, _ = house
    flow = Flow(steps=[FlowStep(device.device_id, "light0"), FlowStep("dev:gone", "light0")])

    summary = await runner.run(flow)

    assert summary.status == RunStatus.ERROR
    assert summary.steps_done == 1
    assert "not connected" in summary.error_message
    assert device_service.command_log.entries()[-1].error


async def test_no_runnable_steps(runner):
    summary = await runner.run(Flow.from_dict({"steps": [{"device_id": "", "command": "init"}]}))

    assert summary.status == RunStatus.ERROR
    assert summary.steps_planned == 0


async def test_history_is_persisted(runner, house, store):
    device, _ = house
    await runner.run(Flow(steps=[FlowStep(device.device_id, "light0")]))
    await runner.run(Flow(steps=[FlowStep(device.device_id, "light0")]))

    history = store.get(RUN_HISTORY_KEY)
    assert len(history) == 2
    assert history[-1]["status"] == "OK"
    assert runner.history() == history


def test_stop_when_idle(runner):
    assert runner.stop() is False


@pytest.mark.parametrize(
    "data",
    [
        {"mode": "forever"},
        {"cycles": "many"},
        {"steps": [{"device_id": "dev:a", "command": "x", "delay_ms": "soon"}]},
    ],
)
def test_flow_validation(data):
    with pytest.raises(ValidationError):
        Flow.from_dict(data)
