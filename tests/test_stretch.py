# tests/test_stretch.py
import numpy as np
import pytest

from astrocat.stretch import (AutoStretcher, auto_stretch, clip, clip_array, compute_channel_params, display,
                              expand, mtf, mtf_array)


@pytest.mark.parametrize("m", [0.05, 0.25, 0.5, 0.9])
def test_mtf_fixed_points(m):
    assert mtf(0.0, m) == 0.0
    assert mtf(1.0, m) == 1.0
    assert mtf(m, m) == 0.5


def test_mtf_is_monotonic():
    xs = np.linspace(0.0, 1.0, 101)
    ys = [mtf(x, 0.1) for x in xs]
    assert all(b >= a for a, b in zip(ys, ys[1:]))


def test_clip_bounds():
    assert clip(0.1, 0.2, 0.8) == 0.0
    assert clip(0.9, 0.2, 0.8) == 1.0
    assert clip(0.5, 0.0, 1.0) == 0.5


def test_clip_with_empty_range_raises_inside_it():
    assert clip(0.1, 0.3, 0.3) == 0.0
    assert clip(0.5, 0.3, 0.3) == 1.0
    with pytest.raises(ValueError):
        clip(0.3, 0.3, 0.3)


def test_expand_with_empty_range_raises():
    with pytest.raises(ValueError):
        expand(0.5, 0.2, 0.2)


def test_display_identity_at_midpoint():
    assert display(0.5, m=0.5, s=0.0, h=1.0) == pytest.approx(0.5)


def test_vectorised_functions_match_scalar():
    xs = np.linspace(0.0, 1.0, 57)
    np.testing.assert_allclose(mtf_array(xs, 0.2), [mtf(x, 0.2) for x in xs])
    np.testing.assert_allclose(clip_array(xs, 0.1, 0.7), [clip(x, 0.1, 0.7) for x in xs])


def test_clip_array_degenerate_range_is_a_threshold():
    xs = np.array([0.1, 0.3, 0.5])
    np.testing.assert_array_equal(clip_array(xs, 0.3, 0.3), [0.0, 0.0, 1.0])


def test_dark_channel_parameters():
    rng = np.random.default_rng(7)
    x = rng.normal(0.05, 0.002, size=10_000).astype(np.float32)
    params = compute_channel_params(x)

    assert params.A == 0
    assert params.B == 0.25
    assert params.C == -2.8
    assert 0.0 <= params.S < 0.05
    assert params.H == 1.0
    assert 0.0 < params.M < 0.5


def test_bright_channel_parameters():
    rng = np.random.default_rng(7)
    x = rng.normal(0.8, 0.01, size=10_000).astype(np.float32)
    params = compute_channel_params(x)

    assert params.A == 1
    assert params.S == 0.0
    assert 0.8 < params.H <= 1.0


def test_stretch_brings_background_to_quarter_grey():
    rng = np.random.default_rng(11)
    frame = rng.normal(1000, 50, size=(80, 120)).clip(0, 65535).astype(np.uint16)
    frame[40, 60] = 60000

    out = auto_stretch(frame)

    assert out.shape == (1, 80, 120)
    assert out.dtype == np.uint8
    assert 40 <= np.median(out) <= 90
    assert out[0, 40, 60] == 255


def test_stretch_preserves_order():
    rng = np.random.default_rng(3)
    frame = rng.normal(1000, 50, size=(50, 50)).clip(0, 65535).astype(np.uint16)
    order = np.argsort(frame, axis=None, kind="stable")
    out = auto_stretch(frame.copy())[0]
    stretched = out.ravel()[order]
    assert np.all(np.diff(stretched.astype(np.int16)) >= 0)


def test_flat_image_stretches_to_black():
    out = auto_stretch(np.full((3, 10, 10), 1234, dtype=np.uint16))
    assert out.shape == (3, 10, 10)
    assert not out.any()


def test_stretcher_writes_back_into_buffer():
    rng = np.random.default_rng(5)
    data = rng.random((3, 16, 16)).astype(np.float32)
    stretcher = AutoStretcher(width=16, height=16, channels=3)
    stretcher.set_data(data)
    params = stretcher.calculate_params()
    out = stretcher.stretch()

    assert len(params) == 3
    np.testing.assert_array_equal(data, out.astype(np.float32))


def test_stretcher_rejects_wrong_buffer_size():
    stretcher = AutoStretcher(width=4, height=4, channels=1)
    with pytest.raises(ValueError):
        stretcher.set_data(np.zeros(15, dtype=np.uint8))
