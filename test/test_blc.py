# 文件：test/test_blc.py
import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import numpy as np
from numpy.testing import assert_array_equal

from stages import blc


def random_planar(low=64, high=300, n=100, dtype=np.float32):
    rng = np.random.default_rng(0)
    return rng.integers(low, high, size=(3, n)).astype(dtype)


def test_zero_black_level_is_identity():
    data = random_planar()
    expected = data.copy()
    out = blc.subtract_black(data, 0, [0, 0, 0])
    assert out is data
    assert_array_equal(data, expected)


def test_scalar_black_level_applies_to_all_channels():
    data = random_planar()
    expected = data - 64
    blc.subtract_black(data, 64)
    assert_array_equal(data, expected)


def test_float_buffer_may_go_negative():
    data = np.array([[10.0], [100.0], [0.0]], dtype=np.float32)
    blc.subtract_black(data, 50)
    assert_array_equal(data[:, 0], [-40.0, 50.0, -50.0])


def test_unsigned_buffer_clamps_at_zero():
    data = np.array([[10, 600], [100, 65535], [0, 512]], dtype=np.uint16)
    blc.subtract_black(data, 512)
    assert data.dtype == np.uint16
    assert_array_equal(data, [[0, 88], [0, 65023], [0, 0]])


def test_per_channel_black_levels():
    data = random_planar()
    expected = data.copy()
    expected[0] -= 10
    expected[2] -= 30
    blc.subtract_black(data, 0, [10, 0, 30])
    assert_array_equal(data, expected)


def test_scalar_wins_over_per_channel():
    data = random_planar()
    expected = data - 5
    blc.subtract_black(data, 5, [10, 20, 30])
    assert_array_equal(data, expected)


def test_per_channel_unsigned():
    data = np.array([[5], [50], [500]], dtype=np.uint16)
    blc.subtract_black(data, 0, [10, 20, 30])
    assert_array_equal(data[:, 0], [0, 30, 470])


def test_apply_reads_config():
    data = random_planar()
    expected = data - 64
    out = blc.apply(data, {"black_level": 64})
    assert_array_equal(out, expected)
