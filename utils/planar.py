# planar.py
# ---------------------
# 平面像素缓冲区工具
# 缓冲区形状为 (通道, N)，N = 宽 * 高，通道顺序固定为 R, G, B（读入时可能是 RGBG 四通道）

import numpy as np

USHRT_MAX = 65535


def check_planar(image, channels=(3,)):
    """检查缓冲区是否为 (C, N) 形状"""
    if image.ndim != 2 or image.shape[0] not in channels:
        raise ValueError(
            f"planar buffer must have shape (C, N) with C in {channels}, got {image.shape}")
    return image


def select_rgb(image):
    """RGBG 四通道只保留前三个通道"""
    check_planar(image, channels=(3, 4))
    if image.shape[0] == 4:
        return np.ascontiguousarray(image[:3])
    return image


def to_planar(hwc):
    """(H, W, C) -> (C, H*W)"""
    h, w, c = hwc.shape
    return np.ascontiguousarray(hwc.reshape(h * w, c).T)


def from_planar(image, height, width):
    """(C, H*W) -> (H, W, C)"""
    check_planar(image, channels=(3, 4))
    if image.shape[1] != height * width:
        raise ValueError(f"buffer holds {image.shape[1]} pixels, expected {height}x{width}")
    return image.T.reshape(height, width, image.shape[0])
