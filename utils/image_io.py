# image_io.py
# ---------------------
# 图像保存：平面缓冲区 (3, N) -> OpenCV 的 (H, W, 3) BGR 图像

import logging

import cv2
import numpy as np

from utils.planar import USHRT_MAX, from_planar

logger = logging.getLogger(__name__)


class ImageWriteError(RuntimeError):
    pass


def to_bgr_image(planar, height, width, bit_depth=8):
    """
    Convert a (3, N) buffer with values in [0, 65535] to an OpenCV BGR image.
    8-bit output keeps the upper byte of each sample.
    """
    rgb = np.clip(from_planar(planar[:3], height, width), 0, USHRT_MAX).astype(np.uint16)
    if bit_depth == 8:
        rgb = (rgb >> 8).astype(np.uint8)
    elif bit_depth != 16:
        raise ValueError(f"bit_depth must be 8 or 16, got {bit_depth}")
    return np.ascontiguousarray(rgb[:, :, ::-1])


def _write(path, img):
    if not cv2.imwrite(path, img):
        raise ImageWriteError(f"OpenCV failed to write image: {path}")
    logger.debug(f"Saved image: {path}")


def save_image_debug(planar, path, height, width):
    """按最大值缩放到 8bit 后保存中间结果"""
    img_float = from_planar(planar[:3], height, width).astype(np.float32)

    max_val = img_float.max()
    if max_val > 0:
        # 防止uint8溢出
        img_processed = np.clip(img_float / max_val * 255.0, 0, 255).astype(np.uint8)
    else:
        img_processed = np.zeros_like(img_float, dtype=np.uint8)

    _write(path, np.ascontiguousarray(img_processed[:, :, ::-1]))


def save_image(planar, path, height, width, bit_depth=8):
    _write(path, to_bgr_image(planar, height, width, bit_depth))
