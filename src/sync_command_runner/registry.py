"""Runner 登记与批量清理模块。

提供进程级别的 runner 管理，包括：
- RunnerRegistry: 所有已激活 runner 的登记（只追加，不清理）
- stop_all: 测试套件结束时停止所有仍在运行的子进程

登记使用弱引用：运行中的 runner 始终被其监控线程强引用，
因此不会丢失仍存活的子进程。
"""

from __future__ import annotations

import atexit
import logging
import threading
import weakref
from typing import TYPE_CHECKING

from .config import get_config
from .errors import ProcessStillRunning

if TYPE_CHECKING:
    from .runner import Runner

__all__ = ["RunnerRegistry", "get_registry"]

logger = logging.getLogger(__name__)


class RunnerRegistry:
    """已激活 runner 的注册表。

    管理所有激活过的 runner，提供：
    - 线程安全的登记（不去重）
    - 批量停止
    - 运行状态查询

    Example:
        ```python
        registry = RunnerRegistry()
        registry.register(runner)

        # 检查状态
        print(f"Running: {registry.running_count}")

        # 停止所有 runner
        stopped = registry.stop_all()
        print(f"Stopped {stopped} runners")
        ```
    """

    def __init__(self) -> None:
        """初始化注册表。"""
        self._refs: list[weakref.ref[Runner]] = []
        self._lock = threading.Lock()

    def register(self, runner: "Runner") -> None:
        """登记 runner。

        Args:
            runner: 已激活的 runner
        """
        with self._lock:
            self._refs.append(weakref.ref(runner))
        logger.debug(f"Registered runner: {runner.short_inspect()}")

    def snapshot(self) -> list["Runner"]:
        """获取当前仍存活的 runner 快照（按登记顺序）。"""
        with self._lock:
            refs = list(self._refs)
        return [runner for runner in (ref() for ref in refs) if runner is not None]

    def list_running(self) -> list["Runner"]:
        """列出所有正在运行的 runner。"""
        return [runner for runner in self.snapshot() if runner.running()]

    @property
    def running_count(self) -> int:
        """正在运行的 runner 数量。"""
        return len(self.list_running())

    def stop_all(self) -> int:
        """停止所有正在运行的 runner。

        单个 runner 停止失败只记录警告，不会中断清理。

        Returns:
            成功停止的 runner 数量
        """
        stopped = 0
        for runner in self.snapshot():
            try:
                if not runner.running():
                    continue
                runner.stop()
                stopped += 1
            except ProcessStillRunning:
                logger.warning(f"Unable to kill {runner.short_inspect()}.")
            except Exception as e:
                logger.warning(f"Error stopping {runner.short_inspect()}: {e}")

        if stopped > 0:
            logger.info(f"Stopped {stopped} running runner(s)")

        return stopped

    def __len__(self) -> int:
        """返回注册表中仍存活的 runner 数量。"""
        return len(self.snapshot())

    def __contains__(self, runner: object) -> bool:
        """检查 runner 是否已登记。"""
        return any(r is runner for r in self.snapshot())


# 全局注册表实例（延迟创建）
_registry: RunnerRegistry | None = None
_registry_lock = threading.Lock()


def _stop_all_at_exit() -> None:
    """atexit 回调：停止全局注册表中的所有 runner。"""
    if _registry is not None:
        _registry.stop_all()


def get_registry() -> RunnerRegistry:
    """获取全局注册表实例。

    首次创建时，若配置开启 atexit_cleanup，则注册退出清理（只注册一次）。
    """
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = RunnerRegistry()
            if get_config().atexit_cleanup:
                atexit.register(_stop_all_at_exit)
        return _registry
