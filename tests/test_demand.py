"""Demand inference from aggregate supply"""

import math

import pytest

from energy_console.common.exceptions import ValidationError
from energy_console.common.state import AUTO_ESTIMATE_ENABLED_KEY, AUTO_ESTIMATE_TUNING_KEY
from energy_console.services.balance.demand import DemandInference


@pytest.fixture
def inference(store):
    inference = DemandInference(store)
    inference.set_enabled(True)
    inference.set_tuning(alpha=0.35, max_step_kw=1.0)
    return inference


def test_step_limited_smoothing(inference):
    assert inference.infer(5) == 5

    # raw 10 is step-capped to 6, then smoothed: 5 + 0.35 * (6 - 5)
    assert inference.infer(10) == pytest.approx(5.35)


def test_first_value_respects_manual_floor(inference):
    assert inference.infer(2, manual_demand_kw=6) == 6


def test_downward_steps_are_limited_too(inference):
    inference.infer(10)
    # raw 2 is step-capped to 9: 10 + 0.35 * (9 - 10)
    assert inference.infer(2) == pytest.approx(9.65)


@pytest.mark.parametrize("supply", [0, -1, None, math.nan, math.inf])
def test_no_value_without_positive_supply(inference, supply):
    assert inference.infer(supply) is None


def test_disabled_returns_none(store):
    inference = DemandInference(store)
    assert inference.infer(5) is None


def test_toggle_resets_state(inference, store):
    inference.infer(5)
    inference.set_enabled(False)
    inference.set_enabled(True)

    assert inference.demand_kw is None
    assert inference.infer(8) == 8
    assert store.get(AUTO_ESTIMATE_ENABLED_KEY) is True


def test_tuning_is_clamped_and_persisted(inference, store):
    tuning = inference.set_tuning(alpha=2, max_step_kw=0)

    assert tuning.alpha == 0.95
    assert tuning.max_step_kw == 0.1
    assert store.get(AUTO_ESTIMATE_TUNING_KEY) == {"alpha": 0.95, "max_step_kw": 0.1}
    assert DemandInference(store).tuning.alpha == 0.95


def test_partial_tuning_update(inference):
    inference.set_tuning(max_step_kw=5)

    assert inference.tuning.alpha == 0.35
    assert inference.tuning.max_step_kw == 5


@pytest.mark.parametrize(
    "tuning",
    [
        {"alpha": "fast"},
        {"alpha": math.nan},
        {"max_step_kw": [1]},
        {"max_step_kw": True},
        {"alpha": 0.5, "max_step_kw": "big"},
    ],
)
def test_invalid_tuning_is_rejected(inference, store, tuning):
    with pytest.raises(ValidationError):
        inference.set_tuning(**tuning)

    assert inference.tuning.alpha == 0.35
    assert inference.tuning.max_step_kw == 1.0
    assert store.get(AUTO_ESTIMATE_TUNING_KEY) == {"alpha": 0.35, "max_step_kw": 1.0}
