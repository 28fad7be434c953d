"""Worker unit tests.

Test coverage:
- Command parsing and single-command validation
- Launching under the launch serializer
- Output redirection, environment and working directory
- Launch failures and best-effort signalling
"""

from __future__ import annotations

import os
import signal
import sys
import time
from pathlib import Path
from unittest import mock

import pytest

from sync_command_runner.errors import ConfigurationError
from sync_command_runner.runtime.launcher import LaunchSerializer
from sync_command_runner.runtime.worker import SHELL, ProcessSpec, Worker, parse_command


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_spec(tmp_path: Path):
    """Build a ProcessSpec writing logs under tmp_path/log."""

    def factory(argv: list[str], **kwargs) -> ProcessSpec:
        kwargs.setdefault("cwd", tmp_path)
        kwargs.setdefault("stdout_path", tmp_path / "log" / "worker.out.log")
        kwargs.setdefault("stderr_path", tmp_path / "log" / "worker.err.log")
        return ProcessSpec(argv=argv, **kwargs)

    return factory


@pytest.fixture
def workers():
    """Track workers and reap any leftover child."""
    created: list[Worker] = []
    yield created
    for worker in created:
        worker.send_signal(signal.SIGKILL)
        worker.join(timeout=5.0)


def _run(worker: Worker, workers: list[Worker]) -> Worker:
    workers.append(worker)
    worker.start()
    assert worker.wait_launched(timeout=5.0)
    return worker


# =============================================================================
# parse_command Tests
# =============================================================================


class TestParseCommand:
    """Test single-command validation."""

    def test_simple_command(self):
        assert parse_command("sleep 5") == [SHELL, "-c", "sleep 5"]

    def test_shell_syntax_kept_verbatim(self):
        """Expansions, prefixes and redirections are left to the shell."""
        command = 'FOO=1 echo "" > out.txt 2>&1'
        assert parse_command(command) == ["/bin/sh", "-c", command]

    @pytest.mark.parametrize("command", ["false && true", "a;b", "echo x ;", "x&&y"])
    def test_chaining_rejected(self, command: str):
        with pytest.raises(ConfigurationError, match="single command"):
            parse_command(command)

    @pytest.mark.parametrize("command", [None, "", "   ", 42])
    def test_missing_command_rejected(self, command):
        with pytest.raises(ConfigurationError, match="is not a command"):
            parse_command(command)

    def test_unbalanced_quotes_rejected(self):
        with pytest.raises(ConfigurationError, match="cannot be parsed"):
            parse_command('echo "unterminated')

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_command("a && b")


# =============================================================================
# Launch Tests
# =============================================================================


class TestLaunch:
    """Test process creation and reaping."""

    def test_launch_and_reap(self, make_spec, workers):
        """The worker spawns, records the pid and reaps the child."""
        pids: list[int] = []
        serializer = LaunchSerializer()
        worker = _run(
            Worker(make_spec(["echo", "hello"]), serializer, on_spawn=pids.append),
            workers,
        )

        worker.join(timeout=5.0)

        assert worker.error is None
        assert pids == [worker.pid]
        assert worker.returncode == 0
        assert worker.is_alive() is False
        assert worker.spec.stdout_path.read_text() == "hello\n"

    def test_log_files_tracked(self, make_spec, workers):
        """Both log handles are registered with the serializer."""
        serializer = LaunchSerializer()
        worker = _run(Worker(make_spec(["true"]), serializer), workers)
        worker.join(timeout=5.0)

        assert serializer.log_files == [worker.stdout_log, worker.stderr_log]
        serializer.close_log_files()

    def test_environment_prepared_under_lock(self, make_spec, workers):
        """prepare_env runs while the launch lock is held."""
        serializer = LaunchSerializer()
        seen: list[bool] = []

        def prepare(env):
            seen.append(serializer._lock.locked())
            env["SCR_WORKER_VALUE"] = "prepared"

        worker = _run(
            Worker(
                make_spec(["sh", "-c", "echo $SCR_WORKER_VALUE $SCR_EXTRA_VALUE"], env={"SCR_EXTRA_VALUE": "extra"}),
                serializer,
                prepare_env=prepare,
            ),
            workers,
        )
        worker.join(timeout=5.0)

        assert seen == [True]
        assert worker.spec.stdout_path.read_text() == "prepared extra\n"
        assert serializer._lock.locked() is False

    def test_working_directory(self, make_spec, workers, tmp_path: Path):
        """The child runs in spec.cwd."""
        workdir = tmp_path / "work"
        workdir.mkdir()
        worker = _run(
            Worker(make_spec([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=workdir), LaunchSerializer()),
            workers,
        )
        worker.join(timeout=5.0)

        assert Path(worker.spec.stdout_path.read_text().strip()).resolve() == workdir.resolve()

    def test_missing_executable(self, make_spec, workers):
        """A spawn failure is stored and the thread ends."""
        pids: list[int] = []
        worker = _run(
            Worker(make_spec(["definitely-not-a-real-binary-5f1c"]), LaunchSerializer(), on_spawn=pids.append),
            workers,
        )
        worker.join(timeout=5.0)

        assert isinstance(worker.error, FileNotFoundError)
        assert worker.pid is None
        assert pids == []
        assert worker.is_alive() is False

    def test_start_is_idempotent(self, make_spec, workers):
        """A second start() does not spawn again."""
        pids: list[int] = []
        worker = _run(Worker(make_spec(["sleep", "5"]), LaunchSerializer(), on_spawn=pids.append), workers)
        worker.start()

        assert len(pids) == 1


# =============================================================================
# Signal Tests
# =============================================================================


class TestSendSignal:
    """Test best-effort signalling."""

    def test_signal_before_launch(self, make_spec):
        worker = Worker(make_spec(["sleep", "5"]), LaunchSerializer())
        assert worker.send_signal(signal.SIGTERM) is False

    def test_signal_running_child(self, make_spec, workers):
        worker = _run(Worker(make_spec(["sleep", "5"]), LaunchSerializer()), workers)

        assert worker.send_signal(signal.SIGTERM) is True
        worker.join(timeout=5.0)
        assert worker.returncode == -signal.SIGTERM

    def test_signal_after_exit(self, make_spec, workers):
        worker = _run(Worker(make_spec(["true"]), LaunchSerializer()), workers)
        worker.join(timeout=5.0)

        assert worker.send_signal(signal.SIGTERM) is False

    def test_signals_process_group(self, make_spec, workers):
        """Signals go to the child's process group."""
        worker = _run(Worker(make_spec(["sleep", "5"]), LaunchSerializer()), workers)

        with mock.patch("sync_command_runner.runtime.worker.os.killpg") as killpg:
            assert worker.send_signal(signal.SIGTERM) is True

        killpg.assert_called_once_with(worker.pid, signal.SIGTERM)

    def test_pipeline_members_terminated(self, make_spec, workers):
        """A shell that does not exec its command is signalled with it."""
        worker = _run(
            Worker(make_spec([SHELL, "-c", "sleep 30 | sleep 30"]), LaunchSerializer()),
            workers,
        )
        time.sleep(0.2)

        worker.send_signal(signal.SIGTERM)
        worker.join(timeout=5.0)

        assert worker.is_alive() is False
        assert worker.returncode is not None

    def test_reaping_waits_for_signal_lock(self, make_spec, workers):
        """The exited child is not reaped while a signal may be in flight."""
        worker = Worker(make_spec(["true"]), LaunchSerializer())
        with worker._reap_lock:
            _run(worker, workers)
            time.sleep(0.3)

            # Exited but unreaped: the pid is still reserved
            assert worker.returncode is None
            os.kill(worker.pid, 0)

        worker.join(timeout=5.0)
        assert worker.returncode == 0
