"""日志配置"""

import logging
import os

from contextlib import contextmanager

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def get_logger(name):
    """获取日志记录器"""
    logger = logging.getLogger(name)
    return logger


def set_verbosity(verbose: int = 0) -> int:
    """按 -v 次数调整根日志级别：0=INFO, >=1=DEBUG；返回生效级别"""
    level = logging.DEBUG if int(verbose) > 0 else logging.INFO
    logging.getLogger().setLevel(level)
    # onnxruntime/insightface 自带的 logger 在 DEBUG 下过于嘈杂
    logging.getLogger("onnxruntime").setLevel(max(level, logging.WARNING))
    return level


@contextmanager
def suppress_fds():
    """Redirect FD 1 and 2 to /dev/null while native code prints.

    InsightFace/onnxruntime write model summaries from C++ while loading, bypassing
    Python's sys.stdout/sys.stderr objects.
    """
    devnull = os.open(os.devnull, os.O_RDWR)
    old_stdout = os.dup(1)
    old_stderr = os.dup(2)
    try:
        os.dup2(devnull, 1)
        os.dup2(devnull, 2)
        yield
    finally:
        os.dup2(old_stdout, 1)
        os.dup2(old_stderr, 2)
        os.close(devnull)
        os.close(old_stdout)
        os.close(old_stderr)
