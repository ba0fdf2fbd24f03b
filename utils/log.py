# log.py
# ---------------------
# 日志初始化：控制台 + 按时间戳命名的日志文件

import logging
import os
from datetime import datetime

LOG_FORMAT = "[%(asctime)s] [%(thread)d] [%(levelname)s] %(message)s"

# log_init 安装的 handler，重复调用时先移除
_installed_handlers = []


def log_init(is_debug=False, file_prefix="", log_dir="logs"):
    """
    Configure the root logger. DEBUG level when ``is_debug``, INFO otherwise.
    Returns the path of the log file, or None when ``log_dir`` is empty.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if is_debug else logging.INFO)
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [logging.StreamHandler()]

    log_file = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{file_prefix}{datetime.now():%Y-%m-%d-%H-%M-%S}.txt")
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _installed_handlers.append(handler)
    return log_file
