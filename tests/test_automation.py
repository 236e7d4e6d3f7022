import math

import numpy as np
import pytest

from mastering_engine.automation import ParameterAutomation, SmoothedParameter, parameter_targets
from mastering_engine.settings import MasteringSettings


def test_unsmoothed_parameter_jumps():
    p = SmoothedParameter(0.0, sr=1000, smoothing=False)
    p.set_target(2.0)
    assert p.value == 2.0
    np.testing.assert_array_equal(p.next_block(4), np.full(4, 2.0))


def test_exponential_approach():
    p = SmoothedParameter(0.0, sr=1000, time_constant=0.05)
    p.set_target(1.0)
    values = p.next_block(50)
    assert values[-1] == pytest.approx(1.0 - math.exp(-1.0), rel=1e-9)
    assert np.all(np.diff(values) > 0.0)
    assert np.all(values < 1.0)
    assert not p.settled


def test_parameter_snaps_once_settled():
    p = SmoothedParameter(-16.0, sr=1000, time_constant=0.05)
    p.set_target(-20.0)
    p.next_block(5000)
    assert p.settled
    assert p.value == -20.0


def test_targets_use_graph_units():
    targets = parameter_targets(MasteringSettings(input_gain=-6.0, stereo_width=150.0))
    assert targets["input_gain"] == pytest.approx(0.501187, rel=1e-5)
    assert targets["width"] == 1.5
    assert targets["limiter_ceiling"] == -0.1


def test_latest_command_wins():
    auto = ParameterAutomation(MasteringSettings(), sr=1000)
    auto.post(MasteringSettings(stereo_width=50.0))
    auto.post(MasteringSettings(stereo_width=150.0))
    assert auto.settings.stereo_width == 100.0
    assert auto.drain() is None
    assert auto.settings.stereo_width == 150.0
    assert auto.parameters["width"].target == 1.5
    assert auto.drain() is None


def test_curve_only_rebuilt_when_saturation_moves():
    auto = ParameterAutomation(MasteringSettings(), sr=1000, curve_resolution=101)
    assert auto.post(MasteringSettings(eq_low=3.0)).curve is None
    command = auto.post(MasteringSettings(saturation=50.0))
    assert command.curve is not None
    assert command.curve.size == 101
    assert auto.drain() is command.curve


def test_settle_time_and_frozen_automation():
    auto = ParameterAutomation(MasteringSettings(), sr=1000, time_constant=0.05)
    assert auto.settled
    assert auto.time_to_settle() == 0.0
    auto.post(MasteringSettings(input_gain=6.0))
    auto.drain()
    assert not auto.settled
    assert 0.0 < auto.time_to_settle() < 2.0
    auto.next_block(5000)
    assert auto.settled

    frozen = ParameterAutomation(MasteringSettings(), sr=1000, frozen=True)
    with pytest.raises(RuntimeError):
        frozen.post(MasteringSettings(input_gain=1.0))
