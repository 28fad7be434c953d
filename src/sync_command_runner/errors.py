"""Runner 异常类。

sync-command-runner v0.1.0
"""

from __future__ import annotations

__all__ = [
    "RunnerError",
    "ConfigurationError",
    "LaunchError",
    "ProcessStillRunning",
]


class RunnerError(Exception):
    """Runner 基础异常。"""
    pass


class ConfigurationError(RunnerError, ValueError):
    """配置错误（缺少命令，或命令不是单条命令）。

    在任何进程创建之前同步抛出。
    """
    pass


class LaunchError(RunnerError):
    """子进程创建失败（如可执行文件不存在）。

    原始异常通过 __cause__ 保留。
    """
    pass


class ProcessStillRunning(RunnerError):
    """stop() 完成信号发送和等待后，进程仍然存活。

    Attributes:
        inspect: 出错 runner 的 short_inspect() 字符串
    """

    def __init__(self, inspect: str) -> None:
        self.inspect = inspect
        super().__init__(f"{inspect} failed to kill.")
