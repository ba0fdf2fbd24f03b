# stages/gamma.py
# ---------------------
# Gamma 校正模块（sRGB 传递曲线）
# ✅ 放在 ISP 流程末尾。输入只有 65536 种取值，曲线结果按输入值缓存。

import logging

import numpy as np

from utils.planar import USHRT_MAX, check_planar

logger = logging.getLogger(__name__)

GAMMA = 2.4
LINEAR_COEFF = 12.92
LINEAR_THRESH_COEFF = 0.0031308
BLACK_OFFSET = 0.055

CACHE_SIZE = 1 << 16
UNSET = -1


def linear_segment(value):
    return value * LINEAR_COEFF


def power_segment(value, max_value):
    return (np.power(value / max_value, 1.0 / GAMMA) * (1.0 + BLACK_OFFSET) - BLACK_OFFSET) * max_value


def transfer_curve(values, max_value=USHRT_MAX):
    """
    Evaluate the sRGB transfer curve on integer levels relative to
    ``max_value``. Results are clamped to [0, max_value] and rounded.
    """
    values = np.asarray(values, dtype=np.float64)
    threshold = LINEAR_THRESH_COEFF * max_value
    curve = np.where(values < threshold,
                     linear_segment(values),
                     power_segment(np.maximum(values, threshold), max_value))
    return np.rint(np.clip(curve, 0, max_value)).astype(np.int32)


class GammaCurveCache:
    """
    Memoized gamma curve, one slot per 16-bit input level.

    The cache is keyed by the normalization maximum: calling ``lookup`` with
    a different ``max_value`` clears every slot first.
    """

    def __init__(self):
        self.curve = np.full(CACHE_SIZE, UNSET, dtype=np.int32)
        self.max_value = None

    def clear(self):
        self.curve.fill(UNSET)

    def is_set(self, level):
        return self.curve[level] != UNSET

    def lookup(self, levels, max_value=USHRT_MAX):
        """Return curve values for ``levels`` (ints in [0, 65535]), filling missing slots."""
        max_value = float(max_value)
        if self.max_value != max_value:
            if self.max_value is not None:
                logger.debug(f"Gamma: 归一化最大值 {self.max_value} -> {max_value}，清空缓存")
            self.clear()
            self.max_value = max_value

        distinct = np.unique(levels)
        missing = distinct[self.curve[distinct] == UNSET]
        if missing.size:
            self.curve[missing] = transfer_curve(missing, max_value)
        return self.curve[levels]


def gamma_correction(image, cache, use_observed_max=False):
    """
    Apply the cached sRGB gamma curve to a (3, N) buffer.

    Args:
        image (np.ndarray): planar buffer, any numeric dtype. Samples are
            rounded and clamped to [0, 65535] before lookup.
        cache (GammaCurveCache): cache owned by the caller's converter.
        use_observed_max (bool): normalize by the buffer's maximum instead
            of 65535.

    Returns:
        np.ndarray: new uint16 buffer, the input is not modified.
    """
    check_planar(image)
    levels = np.clip(np.rint(image), 0, USHRT_MAX).astype(np.int64)

    if use_observed_max:
        max_value = max(float(levels.max()), 1.0) if levels.size else float(USHRT_MAX)
    else:
        max_value = float(USHRT_MAX)

    return cache.lookup(levels, max_value).astype(np.uint16)


def apply(image, config, cache):
    use_observed_max = config.get("use_observed_max", False)
    corrected = gamma_correction(image, cache, use_observed_max)
    logger.debug(f"Gamma: 输出范围 [{corrected.min()}, {corrected.max()}]")
    return corrected
