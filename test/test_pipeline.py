import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import cv2
import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

import pipeline
from pipeline import ISPPipeline, RawConverter
from raw_loader.raw_reader import RawCapture
from stages import color_space

# identity 矩阵 + 中灰 8192: ((8192/65535)^(1/2.4) * 1.055 - 0.055) * 65535 = 25465.3
MID_GRAY_SRGB = 25465


def mid_gray_capture(channels=3, height=2, width=3, value=8192):
    image = np.full((channels, height * width), value, dtype=np.uint16)
    return RawCapture(image=image, height=height, width=width)


def test_camera_to_srgb_then_gamma_on_mid_gray():
    rc = RawConverter()
    pixel = np.full((3, 1), 8192, dtype=np.uint16)
    srgb = color_space.camera_to_srgb(pixel, np.eye(3, 4))
    assert_allclose(srgb, np.full((3, 1), 8192.0))

    out = rc.gamma_correction(srgb)
    assert_array_equal(out, np.full((3, 1), MID_GRAY_SRGB))
    assert rc.gamma_curve.is_set(8192)


def test_converter_keeps_cache_between_calls():
    rc = RawConverter()
    rc.gamma_correction(np.full((3, 1), 8192.0))
    rc.gamma_curve.curve[8192] = 7
    assert_array_equal(rc.gamma_correction(np.full((3, 1), 8192.0)), np.full((3, 1), 7))
    # 新实例有自己的缓存
    assert_array_equal(RawConverter().gamma_correction(np.full((3, 1), 8192.0)),
                       np.full((3, 1), MID_GRAY_SRGB))


def test_xyz_path_with_identity_calibration():
    rc = RawConverter(color_path="xyz")
    capture = mid_gray_capture()
    srgb = rc.convert_to_srgb(capture.image, capture)
    assert_allclose(srgb, np.full((3, 6), 8192.0), rtol=1e-4)


def test_unknown_color_path():
    with pytest.raises(ValueError):
        RawConverter(color_path="aces")


def test_process_runs_all_stages():
    capture = mid_gray_capture(channels=4, value=1024 + 64)
    capture.black_level = 64 * 8
    cfg = {
        'raw_adjust': {'enable': True},
        'blc': {'enable': True},
        'color_conversion': {'enable': True, 'method': 'direct'},
        'brightness': {'enable': True, 'stretch_rate': 0.0},
        'gamma': {'enable': True},
    }
    out = ISPPipeline(config=cfg).process(capture)
    # (1088 << 3) - 512 = 8192
    assert out.shape == (3, 6)
    assert out.dtype == np.uint16
    assert_array_equal(out, np.full((3, 6), MID_GRAY_SRGB))


def test_config_black_level_overrides_metadata():
    capture = mid_gray_capture(value=8192 + 100)
    capture.black_level = 5000
    cfg = {'blc': {'black_level': 100}, 'gamma': {'enable': False}}
    out = ISPPipeline(config=cfg).process(capture)
    assert_allclose(out, np.full((3, 6), 8192.0))


def test_process_passes_stage_sections_to_stages():
    # raw_adjust.shift 来自配置：2048 << 2 = 8192
    capture = mid_gray_capture(value=2048)
    cfg = {'raw_adjust': {'enable': True, 'shift': 2}, 'blc': {'enable': False},
           'gamma': {'enable': False}}
    out = ISPPipeline(config=cfg).process(capture)
    assert_allclose(out, np.full((3, 6), 8192.0))


def test_process_hands_capture_matrices_to_color_stage(monkeypatch):
    seen = {}
    real_apply = color_space.apply

    def recording_apply(image, config):
        seen.update(config)
        return real_apply(image, config)

    monkeypatch.setattr(pipeline.color_space, "apply", recording_apply)
    capture = mid_gray_capture()
    cfg = {'color_conversion': {'method': 'xyz'}, 'gamma': {'enable': False}}
    ISPPipeline(config=cfg).process(capture)
    assert seen['method'] == 'xyz'
    assert seen['color_matrix'] is capture.color_matrix
    assert seen['cam_xyz'] is capture.cam_xyz
    assert seen['analog_balance'] is capture.analog_balance


def test_process_reuses_converter_gamma_cache():
    isp = ISPPipeline(config={})
    isp.process(mid_gray_capture())
    assert isp.converter.gamma_curve.is_set(8192)
    isp.converter.gamma_curve.curve[8192] = 7
    out = isp.process(mid_gray_capture())
    assert_array_equal(out, np.full((3, 6), 7))


def test_process_saves_debug_steps(tmp_path):
    cfg = {'brightness': {'enable': True, 'stretch_rate': 0.01}}
    ISPPipeline(config=cfg).process(mid_gray_capture(), debug_dir=str(tmp_path), measure=True)
    saved = sorted(os.listdir(tmp_path))
    assert saved == ['step2_blc.png', 'step3_srgb.png', 'step4_brightness.png', 'step5_gamma.png']


def test_run_writes_one_png_per_file(tmp_path, monkeypatch):
    input_dir = tmp_path / "raw"
    input_dir.mkdir()
    for name in ("a.dng", "b.DNG", "notes.txt"):
        (input_dir / name).write_bytes(b"")

    read_paths = []

    def fake_read_raw(cfg):
        read_paths.append(cfg['path'])
        return mid_gray_capture()

    monkeypatch.setattr(pipeline, "read_raw", fake_read_raw)
    cfg = {
        'raw': {'input_dir': str(input_dir)},
        'output': {'output_dir': str(tmp_path / "out"), 'bit_depth': 8, 'save_raw': True},
    }
    outputs = ISPPipeline(config=cfg).run()

    assert [os.path.basename(p) for p in read_paths] == ["a.dng", "b.DNG"]
    assert [os.path.basename(p) for p in outputs] == ["a_srgb_no_adj.png", "b_srgb_no_adj.png"]
    img = cv2.imread(outputs[0], cv2.IMREAD_UNCHANGED)
    assert img.shape == (2, 3, 3)
    assert np.all(img == MID_GRAY_SRGB >> 8)
    assert os.path.exists(tmp_path / "out" / "a_raw.png")


def test_run_without_files(tmp_path):
    cfg = {'raw': {'input_dir': str(tmp_path)}, 'output': {'output_dir': str(tmp_path / "out")}}
    assert ISPPipeline(config=cfg).run() == []


def test_run_requires_input():
    with pytest.raises(ValueError):
        ISPPipeline(config={}).run()


def test_pipeline_reads_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("color_conversion:\n  method: xyz\n", encoding="utf-8")
    isp = ISPPipeline(str(config_file))
    assert isp.converter.color_path == "xyz"
