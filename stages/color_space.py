# stages/color_space.py
# ---------------------
# 色彩空间转换模块
# ✅ 相机原生色彩空间 -> CIE XYZ (D65) -> sRGB'，或者直接 相机 -> sRGB'
# 两条路径数值上不保证一致，都保留，由 config 的 method 选择。

import logging

import numpy as np
from scipy import linalg

from utils.planar import check_planar

logger = logging.getLogger(__name__)

# CIE XYZ (D65) -> sRGB'
SRGB_FROM_XYZ_D65 = np.array([
    [3.079955, -1.537139, -0.542816],
    [-0.921259, 1.876011, 0.045247],
    [0.052887, -0.204026, 1.151138]
], dtype=np.float32)

ROW_SUM_EPS = 1e-7

METHODS = ("direct", "xyz")


def _balance_diagonal(analog_balance):
    ab = np.asarray(analog_balance, dtype=np.float64)
    if ab.ndim == 2:
        ab = np.diag(ab)
    return np.diag(ab[:3])


def xyz_from_camera_matrix(color_matrix, analog_balance):
    """
    Build the camera native -> XYZ matrix.

    ``color_matrix`` maps XYZ to the reference camera space (ColorMatrix in
    DNG, 3x3 or 4x3, extra row unused). Each row of
    ``analog_balance @ color_matrix`` is normalized by its sum so that XYZ
    white maps to camera white; rows with a negligible sum are zeroed.
    """
    color_matrix = np.asarray(color_matrix, dtype=np.float64)[:3, :3]
    cam_from_xyz = _balance_diagonal(analog_balance) @ color_matrix

    row_sum = cam_from_xyz.sum(axis=1)
    for i in range(3):
        if abs(row_sum[i]) < ROW_SUM_EPS:
            cam_from_xyz[i, :] = 0.0
        else:
            cam_from_xyz[i, :] /= row_sum[i]

    try:
        return linalg.inv(cam_from_xyz)
    except linalg.LinAlgError:
        # 标定行被清零后矩阵奇异，用伪逆
        logger.warning("ColorSpace: cam_from_xyz 矩阵奇异，改用伪逆")
        return linalg.pinv(cam_from_xyz)


def camera_to_xyz(image, color_matrix, analog_balance):
    """Convert a (3, N) camera native buffer to CIE D65 XYZ."""
    check_planar(image)
    xyz_from_cam = xyz_from_camera_matrix(color_matrix, analog_balance).astype(np.float32)
    return np.dot(xyz_from_cam, image.astype(np.float32))


def xyz_to_srgb(xyz_image):
    """Convert a (3, N) XYZ buffer to sRGB'."""
    check_planar(xyz_image)
    return np.dot(SRGB_FROM_XYZ_D65, xyz_image.astype(np.float32))


def camera_to_srgb(image, color_matrix):
    """
    Convert camera native values directly to sRGB' with the camera -> sRGB
    matrix (rgb_cam, 3x3 or 3x4, extra column unused).
    """
    check_planar(image)
    srgb_from_cam = np.asarray(color_matrix, dtype=np.float32)[:3, :3]
    return np.dot(srgb_from_cam, image.astype(np.float32))


def apply(image, config):
    """色彩空间转换，返回 float32 的 sRGB' 缓冲区"""
    method = config.get("method", "direct")

    if method == "direct":
        srgb = camera_to_srgb(image, config["color_matrix"])
    elif method == "xyz":
        xyz = camera_to_xyz(image, config["cam_xyz"], config.get("analog_balance", (1.0, 1.0, 1.0)))
        srgb = xyz_to_srgb(xyz)
    else:
        raise ValueError(f"unknown color conversion method '{method}', expected one of {METHODS}")

    logger.debug(f"ColorSpace({method}): 输出范围 [{srgb.min():.1f}, {srgb.max():.1f}]")
    return srgb
