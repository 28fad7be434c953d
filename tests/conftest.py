"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import contextlib
import os
import shlex
import signal
import sys
import time
from pathlib import Path
from typing import Callable

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from sync_command_runner.config import Config
from sync_command_runner.errors import RunnerError
from sync_command_runner.registry import RunnerRegistry
from sync_command_runner.runner import Command, Runner
from sync_command_runner.runtime.launcher import LaunchSerializer

# 测试子进程脚本
CHILD_SCRIPT = Path(__file__).parent / "fixtures" / "child.py"


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """轮询直到 predicate 为真或超时。"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def _child_command(*args: str) -> str:
    """构造运行测试子进程的命令字符串（exec 使子进程替换 shell）。"""
    parts = [sys.executable, str(CHILD_SCRIPT), *args]
    return "exec " + " ".join(shlex.quote(part) for part in parts)


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """轮询等待函数。"""
    return _wait_for


@pytest.fixture
def child_command() -> Callable[..., str]:
    """测试子进程命令构造函数。"""
    return _child_command


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """以临时目录为根目录的配置。"""
    return Config.for_root(tmp_path, stop_timeout=5.0, atexit_cleanup=False)


@pytest.fixture
def registry() -> RunnerRegistry:
    """独立的注册表（不影响全局注册表）。"""
    return RunnerRegistry()


@pytest.fixture
def serializer():
    """独立的启动锁（测试结束时关闭日志文件）。"""
    serializer = LaunchSerializer()
    yield serializer
    serializer.close_log_files()


@pytest.fixture
def make_runner(config: Config, registry: RunnerRegistry, serializer: LaunchSerializer):
    """Runner 工厂：测试结束时强制清理所有子进程。"""
    created: list[Runner] = []

    def factory(command: str | None = None, source=None, **kwargs) -> Runner:
        kwargs.setdefault("config", config)
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("serializer", serializer)
        runner = Runner(source if source is not None else Command(command), **kwargs)
        created.append(runner)
        return runner

    yield factory

    for runner in created:
        if runner.running():
            with contextlib.suppress(ProcessLookupError):
                os.kill(runner.pid, signal.SIGKILL)
        with contextlib.suppress(RunnerError):
            runner.stop(timeout=5.0)
