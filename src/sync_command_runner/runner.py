"""同步命令 Runner。

设计目标：
1. start() 返回时子进程已创建（pid 已记录）
2. stop() 返回时子进程已被回收，否则抛出 ProcessStillRunning
3. 每个实例的 stdout/stderr 写入独立的日志文件
4. 所有实例登记到全局注册表，便于测试结束时统一清理

架构：
- Worker 线程：创建子进程并阻塞等待其退出
- Monitor 线程：等待 stop 事件，发送 TERM + INT，join Worker
- stop 事件 (threading.Event)：stop() 与 Monitor 之间唯一的协调信号
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol, runtime_checkable

import anyio

from .config import Config, get_config
from .diagnostics import enable_diagnostics
from .errors import ConfigurationError, LaunchError, ProcessStillRunning
from .registry import RunnerRegistry, get_registry
from .runtime.launcher import LaunchSerializer, get_launch_serializer
from .runtime.monitor import Monitor
from .runtime.worker import ProcessSpec, Worker, parse_command

__all__ = ["CommandSource", "Command", "Runner", "create_runner"]

logger = logging.getLogger(__name__)

# stop() 未指定 timeout 时使用配置中的 stop_timeout
_CONFIG_TIMEOUT = object()


@runtime_checkable
class CommandSource(Protocol):
    """提供命令的类型。

    必须提供 command（单条 shell 命令，不含 && 或 ;）。
    可选提供 set_environment(env)：在启动锁内调用，可修改子进程环境变量。
    """

    @property
    def command(self) -> str: ...


@dataclass(frozen=True)
class Command:
    """最简单的 CommandSource：固定命令 + 可选环境变量。"""

    command: str
    env: Mapping[str, str] | None = None


class Runner:
    """子进程生命周期管理器。

    Example:
        runner = Runner(Command("sleep 5"))
        runner.start()
        assert runner.running()
        runner.stop()
        assert not runner.running()

    Attributes:
        source: 命令来源
        name: 类型名（用于日志文件名）
        runner_id: 实例唯一标识
        stdout_path: stdout 日志文件路径
        stderr_path: stderr 日志文件路径
    """

    def __init__(
        self,
        source: CommandSource,
        *,
        name: str | None = None,
        config: Config | None = None,
        registry: RunnerRegistry | None = None,
        serializer: LaunchSerializer | None = None,
    ) -> None:
        self.source = source
        self.config = config if config is not None else get_config()
        self.name = name or type(source).__name__
        self.runner_id = uuid.uuid4().hex
        self.stdout_path, self.stderr_path = self.config.log_paths(
            self.name, self.runner_id
        )

        self._serializer = serializer if serializer is not None else get_launch_serializer()
        self._registry = registry if registry is not None else get_registry()

        # 状态
        self._stop_requested = threading.Event()
        self._pid: int | None = None
        self._returncode: int | None = None
        self.stdout_log: IO[str] | None = None
        self.stderr_log: IO[str] | None = None

        # 线程句柄（Worker 由 Monitor 清除，Monitor 由 stop() 清除）
        self._worker: Worker | None = None
        self._monitor: Monitor | None = None
        self._handles_lock = threading.Lock()

        if self.config.verbose:
            enable_diagnostics()
        self._registry.register(self)

    @property
    def pid(self) -> int | None:
        """子进程 pid（未启动时为 None）。"""
        return self._pid

    @property
    def returncode(self) -> int | None:
        """子进程退出码（尚未回收时为 None）。"""
        with self._handles_lock:
            worker = self._worker
        if worker is not None:
            return worker.returncode
        return self._returncode

    def start(self) -> None:
        """启动命令。

        Raises:
            ConfigurationError: 缺少命令或命令不是单条命令（不会创建进程）
            LaunchError: 子进程创建失败
        """
        logger.debug(f"{self.short_inspect()} starting")
        self._stop_requested.clear()

        worker = self._ensure_worker()
        worker.wait_launched()
        if worker.error is not None:
            with self._handles_lock:
                if self._worker is worker:
                    self._worker = None
            raise LaunchError(
                f"{self.short_inspect()} failed to launch {self.source.command!r}: "
                f"{worker.error}"
            ) from worker.error

        self.stdout_log, self.stderr_log = worker.stdout_log, worker.stderr_log
        self._ensure_monitor(worker)

    def stop(self, timeout: float | None | object = _CONFIG_TIMEOUT) -> None:
        """停止命令（TERM 后立即 INT）。

        Args:
            timeout: 等待 Monitor 结束的秒数，None 表示无限等待，
                默认使用 config.stop_timeout

        Raises:
            ProcessStillRunning: 信号发送和等待完成后进程仍然存活
        """
        if timeout is _CONFIG_TIMEOUT:
            timeout = self.config.stop_timeout

        logger.debug(f"{self.short_inspect()} stopping")
        self._stop_requested.set()

        with self._handles_lock:
            monitor = self._monitor
        if monitor is not None:
            monitor.join(timeout)
            if monitor.is_alive():
                raise ProcessStillRunning(self.short_inspect())

        if self.running():
            raise ProcessStillRunning(self.short_inspect())

        with self._handles_lock:
            if self._monitor is monitor:
                self._monitor = None

    def running(self) -> bool:
        """子进程是否存活（通过信号 0 探测）。"""
        pid = self._pid
        if pid is None:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        return True

    def short_inspect(self) -> str:
        """用于日志和警告的简短描述。"""
        return f"<{self.name}:{self.runner_id} pid={self._pid}>"

    async def astart(self) -> None:
        """start() 的异步版本（在线程中执行）。"""
        await anyio.to_thread.run_sync(self.start)

    async def astop(self, timeout: float | None | object = _CONFIG_TIMEOUT) -> None:
        """stop() 的异步版本（在线程中执行）。"""
        await anyio.to_thread.run_sync(self.stop, timeout)

    def _ensure_worker(self) -> Worker:
        """创建 Worker（已存在则复用）。"""
        if not hasattr(self.source, "command"):
            raise ConfigurationError(f"{type(self.source).__name__} must define command")
        argv = parse_command(self.source.command)

        with self._handles_lock:
            if self._worker is None:
                spec = ProcessSpec(
                    argv=argv,
                    cwd=Path(self.config.root_dir),
                    stdout_path=self.stdout_path,
                    stderr_path=self.stderr_path,
                    env=getattr(self.source, "env", None),
                )
                self._pid = None
                self._returncode = None
                self._worker = Worker(
                    spec,
                    self._serializer,
                    prepare_env=getattr(self.source, "set_environment", None),
                    on_spawn=self._record_pid,
                    name=f"{self.name}-{self.runner_id[:8]}",
                )
                self._worker.start()
            return self._worker

    def _ensure_monitor(self, worker: Worker) -> Monitor:
        """创建 Monitor（已存在则复用）。"""
        with self._handles_lock:
            if self._monitor is None:
                self._monitor = Monitor(
                    worker,
                    self._stop_requested,
                    on_finished=self._clear_worker,
                    describe=self.short_inspect,
                )
                self._monitor.start()
            return self._monitor

    def _record_pid(self, pid: int) -> None:
        self._pid = pid

    def _clear_worker(self) -> None:
        with self._handles_lock:
            if self._worker is not None:
                self._returncode = self._worker.returncode
            self._worker = None

    def __enter__(self) -> "Runner":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def __repr__(self) -> str:
        return self.short_inspect()


def create_runner(command: str, env: Mapping[str, str] | None = None, **kwargs) -> Runner:
    """用命令字符串直接创建 Runner。

    Args:
        command: 单条 shell 命令
        env: 额外的子进程环境变量
        **kwargs: 传递给 Runner 的其他参数
    """
    return Runner(Command(command, env), **kwargs)
