# ---------------------
# 读取 RAW 图像（ProRaw / 线性 DNG）
# 通过 rawpy (LibRaw) 打开文件，返回平面缓冲区 (C, N) 和颜色元数据
# 注意：只支持已去马赛克的线性 DNG，Bayer 格式的 RAW 不在本工程范围内

import logging
import os
from dataclasses import dataclass, field

import numpy as np
import rawpy

from utils.planar import to_planar

logger = logging.getLogger(__name__)


class RawReadError(RuntimeError):
    """LibRaw 打开、解包失败或数据格式不支持"""


@dataclass
class RawCapture:
    image: np.ndarray
    height: int
    width: int
    black_level: int = 0
    black_levels: list = field(default_factory=lambda: [0, 0, 0])
    color_matrix: np.ndarray = field(default_factory=lambda: np.eye(3, 4, dtype=np.float32))
    cam_xyz: np.ndarray = field(default_factory=lambda: np.eye(4, 3, dtype=np.float32))
    analog_balance: np.ndarray = field(default_factory=lambda: np.ones(3, dtype=np.float32))
    path: str = ""


def split_black_levels(per_channel):
    """全部通道相同时作为公共黑电平返回，否则返回分通道黑电平"""
    levels = [int(v) for v in per_channel[:3]]
    if len(set(levels)) == 1:
        return levels[0], [0, 0, 0]
    return 0, levels


def read_raw(cfg):
    path = cfg['path']
    if not os.path.isfile(path):
        raise RawReadError(f"LibRaw failed to read file: {path} (no such file)")

    try:
        with rawpy.imread(path) as raw:
            if raw.raw_type != rawpy.RawType.Stack:
                raise RawReadError(
                    f"{path} is a mosaiced raw file; only linear (demosaiced) DNG is supported")
            pixels = np.array(raw.raw_image_visible, dtype=np.uint16)
            black_level, black_levels = split_black_levels(raw.black_level_per_channel)
            color_matrix = np.array(raw.color_matrix, dtype=np.float32)
            cam_xyz = np.array(raw.rgb_xyz_matrix, dtype=np.float32)
    except rawpy.LibRawError as e:
        raise RawReadError(f"LibRaw failed to read or unpack file: {path}: {e}") from e

    if pixels.ndim != 3:
        raise RawReadError(f"unexpected raw image shape {pixels.shape} in {path}")

    height, width = pixels.shape[:2]
    capture = RawCapture(
        image=to_planar(pixels),
        height=height,
        width=width,
        black_level=black_level,
        black_levels=black_levels,
        color_matrix=color_matrix,
        cam_xyz=cam_xyz,
        path=path,
    )
    logger.debug(f"LibRaw successfully reads the raw file. Filename: {path}, "
                 f"shape: {capture.image.shape}, black level: {black_level}, "
                 f"black levels: {black_levels}")
    return capture
