# stages/blc.py
# ---------------------
# 黑电平校正模块（Black Level Correction）
# ✅ 在色彩转换之前执行，黑电平来自 DNG 元数据。

import logging

import numpy as np

from utils.planar import check_planar

logger = logging.getLogger(__name__)


def _subtract(channel_view, offset):
    if np.issubdtype(channel_view.dtype, np.unsignedinteger):
        # 无符号类型下负值截断为 0，不允许回绕
        result = channel_view.astype(np.int64) - offset
        channel_view[...] = np.maximum(result, 0)
    else:
        channel_view -= offset


def subtract_black(image, black_level, black_levels=None):
    """
    Subtract the sensor black level from every sample, in place.

    Args:
        image (np.ndarray): planar buffer, shape (3, N) or (4, N).
        black_level: common black level. If non-zero it is applied to all
            channels and ``black_levels`` is ignored.
        black_levels: per-channel black levels for R, G, B. Channels with a
            zero entry are left untouched.

    Returns:
        np.ndarray: the same buffer.
    """
    check_planar(image, channels=(3, 4))
    if black_level:
        _subtract(image, black_level)
    elif black_levels is not None:
        for ch in range(3):
            if black_levels[ch]:
                _subtract(image[ch], black_levels[ch])
    return image


def apply(image, config):
    black_level = config.get("black_level", 0)
    black_levels = config.get("black_levels")
    logger.debug(f"BLC: 黑电平 {black_level}, 分通道黑电平 {black_levels}")

    subtract_black(image, black_level, black_levels)

    logger.debug(f"BLC: 输出范围 [{image.min():.1f}, {image.max():.1f}]")
    return image
