"""SCR 环境变量配置管理。

环境变量:
    SCR_ROOT: 子进程的工作目录
        - 未设置 = 当前工作目录

    SCR_LOG_DIR: 日志文件目录
        - 未设置 = <SCR_ROOT>/log

    SCR_VERBOSE: 诊断输出（向 stderr 输出生命周期步骤）
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)
        - 兼容旧变量 VERBOSE

    SCR_STOP_TIMEOUT: stop() 等待监控线程结束的时间（秒）
        - 未设置 / 0 / none = 无限等待 (默认)
        - 正数 = 超时后抛出 ProcessStillRunning

    SCR_ATEXIT_CLEANUP: 解释器退出时是否停止所有已登记的 runner
        - true/1/yes = 开启 (默认)
        - false/0/no = 关闭
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

# None 表示无限等待
DEFAULT_STOP_TIMEOUT: float | None = None


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_stop_timeout(value: str | None) -> float | None:
    """解析 stop 超时时间环境变量。

    Returns:
        超时秒数，None 表示无限等待
    """
    if value is None or not value.strip():
        return DEFAULT_STOP_TIMEOUT
    value = value.strip().lower()
    if value == "none":
        return None
    try:
        timeout = float(value)
    except ValueError:
        return DEFAULT_STOP_TIMEOUT
    if timeout <= 0:
        return None
    return max(0.1, min(timeout, 3600.0))  # 限制在 0.1-3600 秒范围


@dataclass
class Config:
    """SCR 配置。

    Attributes:
        root_dir: 子进程工作目录
        log_dir: 日志文件目录
        verbose: 是否向 stderr 输出诊断信息
        stop_timeout: stop() 的默认等待时间（秒），None 表示无限等待
        atexit_cleanup: 解释器退出时是否清理所有 runner
    """

    root_dir: Path
    log_dir: Path
    verbose: bool = False
    stop_timeout: float | None = DEFAULT_STOP_TIMEOUT
    atexit_cleanup: bool = True

    @classmethod
    def for_root(cls, root_dir: str | os.PathLike[str], **kwargs) -> "Config":
        """以指定根目录创建配置，日志目录默认为 <root>/log。"""
        root = Path(root_dir).resolve()
        log_dir = kwargs.pop("log_dir", None)
        return cls(
            root_dir=root,
            log_dir=Path(log_dir) if log_dir is not None else root / "log",
            **kwargs,
        )

    def log_paths(self, name: str, runner_id: str) -> tuple[Path, Path]:
        """返回 (stdout, stderr) 日志文件路径。"""
        stem = f"{name}-{runner_id}"
        return (
            self.log_dir / f"{stem}.out.log",
            self.log_dir / f"{stem}.err.log",
        )

    def __repr__(self) -> str:
        return (
            f"Config(root_dir={self.root_dir}, "
            f"log_dir={self.log_dir}, "
            f"verbose={self.verbose}, "
            f"stop_timeout={self.stop_timeout}, "
            f"atexit_cleanup={self.atexit_cleanup})"
        )


def load_config() -> Config:
    """从环境变量加载配置。"""
    root = Path(os.environ.get("SCR_ROOT") or os.getcwd()).resolve()
    log_dir = os.environ.get("SCR_LOG_DIR")

    verbose_value = os.environ.get("SCR_VERBOSE")
    if verbose_value is None:
        verbose_value = os.environ.get("VERBOSE")

    return Config(
        root_dir=root,
        log_dir=Path(log_dir).resolve() if log_dir else root / "log",
        verbose=_parse_bool(verbose_value, default=False),
        stop_timeout=_parse_stop_timeout(os.environ.get("SCR_STOP_TIMEOUT")),
        atexit_cleanup=_parse_bool(os.environ.get("SCR_ATEXIT_CLEANUP"), default=True),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
