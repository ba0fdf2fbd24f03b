# pipeline.py
# ---------------------
# ProRaw 转换主流程（Pipeline）
# RawConverter：持有 Gamma 曲线缓存，按 color_path 选择色彩转换路径
# ISPPipeline：读取 config.yaml，批量处理目录中的 RAW 文件，每步可保存调试图像
# ISPPipeline.process：逐步执行 RawAdjust -> BLC -> 色彩转换 -> 亮度拉伸 -> Gamma

import glob
import logging
import os
import time

import numpy as np
import yaml

from raw_loader.raw_reader import read_raw
from stages import blc, brightness, color_space, gamma, raw_adjust
from utils.image_io import save_image, save_image_debug
from utils.planar import select_rgb

logger = logging.getLogger(__name__)


def log_data_range(image, step_name):
    """监控数据范围，帮助调试"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug(f"→ {step_name}: 范围[{image.min():.3f}, {image.max():.3f}], "
                 f"均值{image.mean():.3f}, "
                 f"99%分位数{np.percentile(image, 99):.3f}")


class RawConverter:
    """
    Converts planar camera-native buffers to sRGB.

    One instance owns one gamma curve cache; use an instance from a single
    pipeline at a time.

    Args:
        color_path (str): ``"direct"`` multiplies by the camera -> sRGB matrix,
            ``"xyz"`` goes through CIE XYZ with the calibration matrix.
    """

    def __init__(self, color_path="direct"):
        if color_path not in color_space.METHODS:
            raise ValueError(f"unknown color path '{color_path}', expected one of {color_space.METHODS}")
        self.color_path = color_path
        self.gamma_curve = gamma.GammaCurveCache()

    def convert_to_srgb(self, image, capture, config=None):
        """把拍摄元数据中的矩阵交给色彩空间模块，按 color_path 转到 sRGB'"""
        color_cfg = dict(config or {})
        color_cfg['method'] = self.color_path
        color_cfg['color_matrix'] = capture.color_matrix
        color_cfg['cam_xyz'] = capture.cam_xyz
        color_cfg['analog_balance'] = capture.analog_balance
        return color_space.apply(image, color_cfg)

    def gamma_correction(self, image, config=None):
        return gamma.apply(image, config or {}, self.gamma_curve)


class StepTimer:
    """记录每一步的运行时间（毫秒）"""

    def __init__(self, enabled=False):
        self.enabled = enabled
        self.total_ms = 0.0

    def run(self, step_name, func, *args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000.0
        self.total_ms += elapsed
        if self.enabled:
            logger.info(f"Done {step_name}. Run time (ms): {elapsed:.3f}")
        return result


class ISPPipeline:
    def __init__(self, config_file=None, config=None):
        if config is None:
            with open(config_file, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        self.config = config or {}
        color_cfg = self.config.get('color_conversion', {})
        self.converter = RawConverter(color_cfg.get('method', 'direct'))

    def find_raw_files(self):
        raw_cfg = self.config.get('raw', {})
        if raw_cfg.get('path'):
            return [raw_cfg['path']]

        input_dir = raw_cfg.get('input_dir')
        if not input_dir:
            raise ValueError("config.yaml 中 'raw' 部分必须指定 'path' 或 'input_dir'。")

        extensions = raw_cfg.get('extensions', ['.dng'])
        raw_files = []
        for ext in extensions:
            raw_files.extend(glob.glob(os.path.join(input_dir, f"*{ext}")))
            raw_files.extend(glob.glob(os.path.join(input_dir, f"*{ext.upper()}")))
        return sorted(set(raw_files))

    def process(self, capture, debug_dir=None, measure=False):
        """
        Run the conversion stages on one capture.

        Returns:
            np.ndarray: uint16 (3, N) buffer ready for writing, or the float
            buffer when gamma correction is disabled.
        """
        cfg = self.config
        rc = self.converter
        timer = StepTimer(measure)

        def save_step(image, name):
            if debug_dir:
                save_image_debug(image, os.path.join(debug_dir, name), capture.height, capture.width)

        image = select_rgb(capture.image)
        logger.debug(f"Raw image shape: {image.shape}")
        log_data_range(image, "原始数据")

        # Step 1: 位深归一化 (RawAdjust)
        raw_adjust_cfg = cfg.get('raw_adjust', {})
        if raw_adjust_cfg.get('enable', False):
            timer.run("raw adjust", raw_adjust.apply, image, raw_adjust_cfg)
            save_step(image, 'step1_raw_adjust.png')

        # Step 2: 黑电平校正 (BLC)，config 中的值优先于元数据
        if cfg.get('blc', {}).get('enable', True):
            blc_cfg = cfg.get('blc', {}).copy()
            blc_cfg.setdefault('black_level', capture.black_level)
            blc_cfg.setdefault('black_levels', capture.black_levels)
            timer.run("black level subtraction", blc.apply, image, blc_cfg)
            log_data_range(image, "BLC")
            save_step(image, 'step2_blc.png')

        # Step 3: 色彩空间转换 (相机原生 -> sRGB')
        color_cfg = cfg.get('color_conversion', {})
        if color_cfg.get('enable', True):
            image = timer.run(f"conversion to sRGB' ({rc.color_path})", rc.convert_to_srgb,
                              image, capture, color_cfg)
            log_data_range(image, "sRGB'")
            save_step(image, 'step3_srgb.png')

        # Step 4: 亮度/对比度拉伸
        brightness_cfg = cfg.get('brightness', {})
        if brightness_cfg.get('enable', False):
            if not brightness_cfg.get('stretch_rate', 0.0):
                logger.debug("adjust_brightness() is called, but the data is not stretched.")
            image = timer.run("brightness adjustment", brightness.apply, image, brightness_cfg)
            log_data_range(image, "Brightness")
            save_step(image, 'step4_brightness.png')

        # Step 5: Gamma (线性 -> 非线性)
        gamma_cfg = cfg.get('gamma', {})
        if gamma_cfg.get('enable', True):
            image = timer.run("gamma correction", rc.gamma_correction, image, gamma_cfg)
            log_data_range(image, "Gamma")
            save_step(image, 'step5_gamma.png')

        if measure:
            logger.info(f"Done all conversion. Total run time (ms): {timer.total_ms:.3f}")
        return image

    def run(self, measure=False):
        cfg = self.config
        output_cfg = cfg.get('output', {})
        output_dir = output_cfg.get('output_dir', 'output/results/')
        debug_base_dir = output_cfg.get('debug_dir', 'output/debug_steps/')
        save_debug_steps = output_cfg.get('save_debug_steps', False)
        bit_depth = output_cfg.get('bit_depth', 8)

        raw_files = self.find_raw_files()
        if not raw_files:
            logger.warning("未找到任何 RAW 文件，请检查路径和文件后缀。")
            return []

        os.makedirs(output_dir, exist_ok=True)
        logger.info(f"找到 {len(raw_files)} 个 RAW 文件进行处理。")

        outputs = []
        for raw_file_path in raw_files:
            file_name_with_ext = os.path.basename(raw_file_path)
            file_name_without_ext = os.path.splitext(file_name_with_ext)[0]
            logger.info(f"--- 开始处理文件: {file_name_with_ext} ---")

            current_debug_dir = None
            if save_debug_steps:
                current_debug_dir = os.path.join(debug_base_dir, file_name_without_ext)
                os.makedirs(current_debug_dir, exist_ok=True)

            current_raw_cfg = cfg.get('raw', {}).copy()
            current_raw_cfg['path'] = raw_file_path
            capture = read_raw(current_raw_cfg)
            logger.info(f"图像尺寸：{capture.height}x{capture.width}")

            if output_cfg.get('save_raw', False):
                # RAW 值直接保存为 8bit 图像
                raw_path = os.path.join(output_dir, f"{file_name_without_ext}_raw.png")
                save_image(select_rgb(capture.image), raw_path, capture.height, capture.width, 8)

            result = self.process(capture, current_debug_dir, measure)

            stretch_rate = cfg.get('brightness', {}).get('stretch_rate', 0.0)
            if cfg.get('brightness', {}).get('enable', False) and stretch_rate:
                suffix = f"srgb_adj_{stretch_rate:g}"
            else:
                suffix = "srgb_no_adj"
            output_path = os.path.join(output_dir, f"{file_name_without_ext}_{suffix}.png")
            save_image(result, output_path, capture.height, capture.width, bit_depth)
            logger.info(f"✅ 文件 '{file_name_with_ext}' 处理完成，输出已保存至：{output_path}")
            outputs.append(output_path)

        logger.info("--- 所有文件处理完毕 ---")
        return outputs
