"""Sync Command Runner - 测试用子进程生命周期管理。

环境变量:
    SCR_ROOT: 子进程工作目录（默认当前目录）
    SCR_LOG_DIR: 日志目录（默认 <SCR_ROOT>/log）
    SCR_VERBOSE: 向 stderr 输出诊断信息 (默认 false)

用法:
    from sync_command_runner import create_runner

    runner = create_runner("sleep 5")
    runner.start()
    runner.stop()
"""

__version__ = "0.1.0"

from .config import Config, get_config, reload_config
from .errors import ConfigurationError, LaunchError, ProcessStillRunning, RunnerError
from .registry import RunnerRegistry, get_registry
from .runner import Command, CommandSource, Runner, create_runner

__all__ = [
    "__version__",
    "Command",
    "CommandSource",
    "Config",
    "ConfigurationError",
    "LaunchError",
    "ProcessStillRunning",
    "Runner",
    "RunnerError",
    "RunnerRegistry",
    "create_runner",
    "get_config",
    "get_registry",
    "reload_config",
    "stop_all",
]


def stop_all() -> int:
    """停止全局注册表中所有正在运行的 runner。"""
    return get_registry().stop_all()
