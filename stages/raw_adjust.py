# raw_adjust.py
# ---------------------
# 位深归一化模块（Raw Adjust）
# ✅ 在 BLC 之前执行，把低位深的传感器数据左移到接近 16bit 的范围。

import logging

import numpy as np

from utils.planar import USHRT_MAX, check_planar

logger = logging.getLogger(__name__)


def raw_adjust(image, shift=3):
    """
    Scale raw samples up by ``shift`` bits, clamped to [0, 65535].

    The buffer is modified in place and also returned.
    """
    check_planar(image, channels=(3, 4))
    shifted = np.left_shift(image[:3].astype(np.int64), shift)
    image[:3] = np.clip(shifted, 0, USHRT_MAX)
    return image


def apply(image, config):
    shift = config.get("shift", 3)
    raw_adjust(image, shift)
    logger.debug(f"RawAdjust: 左移 {shift} bit, 输出范围 [{image.min()}, {image.max()}]")
    return image
