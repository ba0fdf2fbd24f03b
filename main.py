# 文件：main.py
# ---------------------
# 主程序入口：加载 config.yaml，执行 ProRaw -> sRGB 转换流程
# 命令行参数会覆盖 config.yaml 中的对应设置。

import argparse
import logging
import sys

import yaml

from pipeline import ISPPipeline
from utils.log import log_init

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Converts a ProRaw image to sRGB', optionally adjusts the brightness "
                    "and contrast, applies gamma correction and saves the result as PNG.")
    parser.add_argument("config", nargs="?", default="config.yaml", help="config file path")
    parser.add_argument("-f", "--file", help="ProRaw file path (overrides raw.input_dir)")
    parser.add_argument("-a", "--alpha", type=float,
                        help="percentage of histogram stretching in [0, 1] (0.01 recommended). "
                             "0 means no adjustment, 1 gives a completely black image")
    parser.add_argument("-c", "--color", choices=("direct", "xyz"), help="color conversion path")
    parser.add_argument("-d", "--debug", action="store_true", help="enable debug logging")
    parser.add_argument("-r", "--raw", action="store_true", help="save the raw image as 8-bit PNG")
    parser.add_argument("-m", "--measure", action="store_true", help="measure execution speed")
    return parser.parse_args(argv)


def load_config(args):
    with open(args.config, encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if args.file:
        cfg.setdefault('raw', {})['path'] = args.file
    if args.alpha is not None:
        brightness_cfg = cfg.setdefault('brightness', {})
        brightness_cfg['enable'] = True
        brightness_cfg['stretch_rate'] = args.alpha
    if args.color:
        cfg.setdefault('color_conversion', {})['method'] = args.color
    if args.debug:
        cfg.setdefault('logging', {})['debug'] = True
        cfg.setdefault('brightness', {})['debug'] = True
    if args.raw:
        cfg.setdefault('output', {})['save_raw'] = True
    return cfg


def main(argv=None):
    args = parse_args(argv)
    try:
        cfg = load_config(args)
        log_cfg = cfg.get('logging', {})
        log_init(log_cfg.get('debug', False),
                 log_cfg.get('file_prefix', 'myconversion-'),
                 log_cfg.get('log_dir', 'logs'))

        isp = ISPPipeline(config=cfg)
        isp.run(measure=args.measure)
    except Exception as e:
        logger.critical(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
