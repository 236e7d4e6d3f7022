import numpy as np
import pytest

from mastering_engine.dsp_utils import db_to_lin, level_db, mid_side_split
from mastering_engine.dynamics import Compressor, static_gain_db
from mastering_engine.filters import BiquadFilter, apply_biquad, biquad_coefficients
from mastering_engine.saturation import Waveshaper, make_distortion_curve
from mastering_engine.system_utils import StabilityChecks
from mastering_engine.width_controller import WidthController

SR = 44100


def _noise(n=8000, seed=1):
    return 0.3 * np.random.default_rng(seed).standard_normal((n, 2))


def test_gain_and_level_helpers():
    assert float(db_to_lin(0.0)) == 1.0
    assert float(db_to_lin(-6.0)) == pytest.approx(0.501187, rel=1e-5)
    assert level_db(0.0) == -100.0
    assert level_db(1e-12, floor_db=-120.0) == -120.0


def test_coefficients_are_cached_and_read_only():
    b, a = biquad_coefficients("lowpass", SR, 1000.0)
    assert a[0] == 1.0
    assert not b.flags.writeable
    assert biquad_coefficients("lowpass", SR, 1000.0)[0] is b
    with pytest.raises(ValueError):
        biquad_coefficients("notch", SR, 1000.0)


def test_flat_peaking_filter_is_identity():
    x = _noise()
    np.testing.assert_allclose(apply_biquad(x, SR, "peaking", 1000.0, 0.0), x, atol=1e-12)


def test_filter_magnitudes():
    lp = BiquadFilter("lowpass", SR, 1000.0)
    assert abs(lp.magnitude_db(50.0)) < 0.5
    assert lp.magnitude_db(10000.0) < -30.0

    hp = BiquadFilter("highpass", SR, 25.0)
    assert abs(hp.magnitude_db(1000.0)) < 0.1

    peak = BiquadFilter("peaking", SR, 1000.0, 6.0)
    assert peak.magnitude_db(1000.0) == pytest.approx(6.0, abs=1e-3)

    low_shelf = BiquadFilter("lowshelf", SR, 100.0, 6.0)
    assert abs(low_shelf.magnitude_db(20.0) - 6.0) < 1.0
    assert abs(low_shelf.magnitude_db(10000.0)) < 0.1

    high_shelf = BiquadFilter("highshelf", SR, 10000.0, -6.0)
    assert abs(high_shelf.magnitude_db(100.0)) < 0.1


def test_streaming_filter_matches_one_shot():
    x = _noise()
    whole = apply_biquad(x, SR, "lowshelf", 100.0, 4.0)
    f = BiquadFilter("lowshelf", SR, 100.0, 4.0)
    chunks = [f.process(x[i : i + 777]) for i in range(0, x.shape[0], 777)]
    np.testing.assert_allclose(np.concatenate(chunks), whole, atol=1e-12)


def test_distortion_curve_shape():
    curve = make_distortion_curve(5.0)
    assert curve.size == 44100
    assert not curve.flags.writeable
    assert np.all(np.diff(curve) > 0.0)
    np.testing.assert_allclose(curve[::-1], -curve, atol=1e-12)
    assert curve[-1] == pytest.approx((2.0 / np.pi) * np.arctan(1.5))
    np.testing.assert_array_equal(make_distortion_curve(150.0), make_distortion_curve(100.0))
    assert np.all(np.diff(make_distortion_curve(100.0)) > 0.0)


def test_waveshaper_without_oversampling_is_table_lookup():
    curve = make_distortion_curve(40.0, resolution=1001)
    ws = Waveshaper(curve, oversample=1)
    x = np.linspace(-1.0, 1.0, 101)[:, None].repeat(2, axis=1)
    expected = (2.0 / np.pi) * np.arctan(x * 5.0)
    np.testing.assert_allclose(ws.process(x), expected, atol=1e-4)


def test_waveshaper_is_block_size_independent():
    x = _noise(6000)
    curve = make_distortion_curve(60.0)
    whole = Waveshaper(curve).process(x)
    ws = Waveshaper(curve)
    chunked = np.concatenate([ws.process(x[i : i + 512]) for i in range(0, x.shape[0], 512)])
    np.testing.assert_allclose(chunked, whole, atol=1e-12)
    assert np.max(np.abs(whole)) < 1.2


def test_waveshaper_curve_swap():
    ws = Waveshaper(make_distortion_curve(5.0))
    new_curve = make_distortion_curve(80.0)
    ws.set_curve(new_curve)
    assert ws.curve is new_curve


def test_static_curve_with_knee():
    gain = static_gain_db(np.array([-40.0, -23.0, -20.0, -17.0, -10.0]), -20.0, 4.0, 6.0)
    assert gain[0] == 0.0
    assert gain[1] == 0.0
    assert gain[2] == pytest.approx(-0.5625)
    assert gain[3] == pytest.approx(-2.25)
    assert gain[4] == pytest.approx(-7.5)


def test_compressor_leaves_quiet_signal_untouched():
    x = 0.01 * np.ones((4000, 2))
    comp = Compressor(SR, ratio=2.5)
    np.testing.assert_array_equal(comp.process(x, -16.0), x)
    assert comp.gain_reduction_db == 0.0


def test_compressor_settles_on_static_curve():
    x = 0.5 * np.ones((SR, 2))
    comp = Compressor(SR, ratio=4.0, attack_ms=3.0, release_ms=250.0, knee_db=0.0)
    out = comp.process(x, -20.0)
    expected_db = level_db(0.5) + (1.0 / 4.0 - 1.0) * (level_db(0.5) + 20.0)
    assert level_db(out[-1, 0]) == pytest.approx(expected_db, abs=1e-3)


def test_compressor_is_block_size_independent():
    x = _noise(9000, seed=3)
    thresholds = np.linspace(-30.0, -10.0, x.shape[0])
    whole = Compressor(SR, ratio=2.0).process(x, thresholds)
    comp = Compressor(SR, ratio=2.0)
    chunked = np.concatenate(
        [comp.process(x[i : i + 1000], thresholds[i : i + 1000]) for i in range(0, x.shape[0], 1000)]
    )
    np.testing.assert_allclose(chunked, whole, atol=1e-12)


def test_width_round_trip_and_mono_fold():
    stereo = StabilityChecks.generate_example(sr=8000, seconds=0.5).astype(np.float64)
    width = WidthController()
    np.testing.assert_allclose(width.process(stereo, 1.0), stereo, atol=1e-12)

    folded = width.process(stereo, 0.0)
    mid, _ = mid_side_split(stereo)
    np.testing.assert_array_equal(folded[:, 0], mid)
    np.testing.assert_array_equal(folded[:, 1], mid)


def test_width_scales_side_per_sample():
    stereo = np.array([[1.0, 0.0], [1.0, 0.0]])
    out = WidthController().process(stereo, np.array([2.0, 0.5]))
    np.testing.assert_allclose(out, [[1.5, -0.5], [0.75, 0.25]])
