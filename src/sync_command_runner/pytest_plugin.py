"""pytest 集成插件。

通过 pytest11 entry point 自动加载：
- 每个测试开始/结束时，在所有已打开的日志文件中写入分隔标记
- 测试会话结束时停止所有仍在运行的 runner（尽最大努力清理）

命令行选项:
    --no-runner-cleanup: 会话结束时不停止 runner（日志文件仍会关闭）
"""

from __future__ import annotations

from datetime import datetime

import pytest

from .registry import get_registry
from .runtime.launcher import get_launch_serializer

MARKER_PREFIX = "SyncCommandRunner.log"


def format_marker(description: str, end: bool = False) -> str:
    """生成日志分隔标记。"""
    timestamp = datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S %z")
    marker = f"{MARKER_PREFIX} [{timestamp}] -- {description}"
    if end:
        marker += " -- END"
    return marker


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("sync-command-runner")
    group.addoption(
        "--no-runner-cleanup",
        action="store_true",
        default=False,
        help="do not stop running command runners at session end",
    )


def pytest_runtest_setup(item: pytest.Item) -> None:
    get_launch_serializer().write_marker(format_marker(item.nodeid))


def pytest_runtest_teardown(item: pytest.Item) -> None:
    get_launch_serializer().write_marker(format_marker(item.nodeid, end=True))


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    """会话结束：尽最大努力停止所有 runner，然后关闭日志文件。

    --no-runner-cleanup 只跳过停止 runner，日志文件总是关闭。
    """
    if not session.config.getoption("no_runner_cleanup", default=False):
        get_registry().stop_all()
    get_launch_serializer().close_log_files()
