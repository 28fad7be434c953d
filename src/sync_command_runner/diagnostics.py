"""诊断日志输出。

SCR_VERBOSE 开启时，将 sync_command_runner 命名空间的 DEBUG 日志
（启动、信号发送、线程 join 等生命周期步骤）输出到 stderr。
"""

from __future__ import annotations

import logging
import sys
import threading

__all__ = ["enable_diagnostics", "disable_diagnostics"]

LOGGER_NAME = "sync_command_runner"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_handler: logging.Handler | None = None
_lock = threading.Lock()


def enable_diagnostics() -> logging.Handler:
    """启用 stderr 诊断输出（重复调用只安装一个 handler）。"""
    global _handler
    with _lock:
        if _handler is None:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger = logging.getLogger(LOGGER_NAME)
            logger.addHandler(handler)
            logger.setLevel(logging.DEBUG)
            _handler = handler
        return _handler


def disable_diagnostics() -> None:
    """移除诊断 handler。"""
    global _handler
    with _lock:
        if _handler is not None:
            logger = logging.getLogger(LOGGER_NAME)
            logger.removeHandler(_handler)
            logger.setLevel(logging.NOTSET)
            _handler = None
