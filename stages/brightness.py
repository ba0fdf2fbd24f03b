# stages/brightness.py
# ---------------------
# 亮度/对比度调整模块（直方图拉伸）
# ✅ 在色彩转换之后、Gamma 之前执行。
# 只用 G 通道做直方图（亮度代理），上下各截掉 stretch_rate/2 的像素，
# 再用一个线性映射把 [min, max] 拉到 [0, 65535]，三个通道共用同一映射。

import logging

import numpy as np

from utils.planar import USHRT_MAX, check_planar

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = 1 << 13
BIN_SHIFT = 3

ZERO_RATE = 0.000001
FULL_RATE = 0.999999
SPAN_EPS = 0.00001


def green_histogram(image):
    """8192 个桶，桶宽 8"""
    green = image[1].astype(np.uint16) >> BIN_SHIFT
    return np.bincount(green, minlength=HISTOGRAM_BINS)


def _lower_bin(histogram, acc_thresh):
    # 从低端累加，直到累计数达到阈值；返回的是最后一个被累加的桶的下一个桶
    if acc_thresh <= 0:
        return 0
    reached = np.searchsorted(np.cumsum(histogram), acc_thresh, side="left")
    return min(int(reached) + 1, HISTOGRAM_BINS)


def _upper_bin(histogram, acc_thresh):
    # 从高端向下累加，桶 0 不参与累加
    top = HISTOGRAM_BINS - 1
    if acc_thresh <= 0:
        return top
    reached = np.searchsorted(np.cumsum(histogram[:0:-1]), acc_thresh, side="left")
    return max(top - 1 - int(reached), 0)


def stretch_bounds(image, stretch_rate, debug=False):
    """Return (min_value, max_value) of the percentile cut on the green channel."""
    # 全部按 float32 计算后截断
    acc_thresh = int(np.float32(image.shape[1]) * np.float32(stretch_rate) * np.float32(0.5))
    histogram = green_histogram(image)

    lower = _lower_bin(histogram, acc_thresh)
    upper = _upper_bin(histogram, acc_thresh)
    if debug:
        logger.debug(f"Brightness: acc_thresh={acc_thresh}, min bin={lower}, max bin={upper}")
    return np.float32(lower << BIN_SHIFT), np.float32(upper << BIN_SHIFT)


def adjust_brightness(image, stretch_rate=0.4, debug=False):
    """
    Emphasize brightness and contrast by histogram stretching.

    The input is clipped to [0, 65535] and a histogram with interval 8 is
    built from the green channel. The range [min_value, max_value], where
    the bounds cut the darkest and brightest stretch_rate/2 of the pixels,
    is mapped linearly to [0, 65535].

    Args:
        image (np.ndarray): planar (3, N) buffer.
        stretch_rate (float): fraction in [0, 1]. Near 0 returns ``image``
            itself; near 1 collapses the output to a constant.
        debug (bool): log the intermediate values.

    Returns:
        np.ndarray: float32 buffer, not clamped.
    """
    check_planar(image)
    if stretch_rate < ZERO_RATE:
        if debug:
            logger.debug("Brightness: stretch_rate 为 0，不做调整")
        return image

    clipped = np.clip(image, 0, USHRT_MAX).astype(np.float32)
    min_value = clipped.min() if clipped.size else np.float32(0)
    max_value = clipped.max() if clipped.size else np.float32(0)

    if FULL_RATE <= stretch_rate:
        max_value = min_value
    else:
        min_value, max_value = stretch_bounds(clipped, stretch_rate, debug)

    span = max_value - min_value
    alpha = np.float32(0) if span < SPAN_EPS else np.float32(USHRT_MAX) / span
    beta = -min_value * alpha
    if debug:
        logger.debug(f"Brightness: min value={min_value}, max value={max_value}, "
                     f"alpha={alpha:.6f}, beta={beta:.6f}")

    # 先乘后加，两次 float32 舍入，与逐元素 x * alpha + beta 一致（非 FMA）
    result = np.multiply(clipped, alpha, out=clipped)
    result += beta
    return result


def apply(image, config):
    stretch_rate = config.get("stretch_rate", 0.0)
    debug = config.get("debug", False)
    adjusted = adjust_brightness(image, stretch_rate, debug)
    logger.debug(f"Brightness: 输出范围 [{adjusted.min():.1f}, {adjusted.max():.1f}]")
    return adjusted
