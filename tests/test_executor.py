from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path

import allure
import pytest

from fleet_worker.worker.errors import TaskExecutionError
from fleet_worker.worker.executor import TaskExecutor

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Task Execution"),
]


def test_run_captures_stdout_and_stderr(tmp_path: Path) -> None:
    stdout_path = tmp_path / "stdout.log"
    stderr_path = tmp_path / "stderr.log"
    handle = TaskExecutor().run(
        sys.executable,
        ["-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"],
        stdout_path,
        stderr_path,
    )

    assert handle.wait() == 3
    assert handle.closed
    assert stdout_path.read_text().strip() == "out"
    assert stderr_path.read_text().strip() == "err"


def test_run_truncates_existing_log_files(tmp_path: Path) -> None:
    stdout_path = tmp_path / "stdout.log"
    stderr_path = tmp_path / "stderr.log"
    stdout_path.write_text("stale output from a previous task\n")

    TaskExecutor().run(sys.executable, ["-c", "pass"], stdout_path, stderr_path).wait()

    assert stdout_path.read_text() == ""
    assert stderr_path.exists()


def test_run_suppresses_stdin(tmp_path: Path) -> None:
    handle = TaskExecutor().run(
        sys.executable,
        ["-c", "import sys; print(repr(sys.stdin.read()))"],
        tmp_path / "stdout.log",
        tmp_path / "stderr.log",
    )

    assert handle.wait() == 0
    assert (tmp_path / "stdout.log").read_text().strip() == "''"


def test_kill_terminates_running_process_and_closes_logs(tmp_path: Path) -> None:
    handle = TaskExecutor().run(
        sys.executable,
        ["-c", "import time; time.sleep(30)"],
        tmp_path / "stdout.log",
        tmp_path / "stderr.log",
    )
    threading.Timer(0.2, handle.kill).start()

    started = time.monotonic()
    exit_code = handle.wait()

    assert time.monotonic() - started < 10
    assert exit_code != 0
    assert handle.closed


def test_kill_after_exit_is_a_noop(tmp_path: Path) -> None:
    handle = TaskExecutor().run(
        sys.executable,
        ["-c", "pass"],
        tmp_path / "stdout.log",
        tmp_path / "stderr.log",
    )
    assert handle.wait() == 0

    handle.kill()
    handle.kill()
    handle.close()
    assert handle.closed


def test_run_reports_missing_command(tmp_path: Path) -> None:
    with pytest.raises(TaskExecutionError, match="Failed to start"):
        TaskExecutor().run(
            str(tmp_path / "no-such-binary"),
            [],
            tmp_path / "stdout.log",
            tmp_path / "stderr.log",
        )


def test_run_reports_unwritable_log_path(tmp_path: Path) -> None:
    with pytest.raises(TaskExecutionError, match="Cannot open log file"):
        TaskExecutor().run(
            sys.executable,
            ["-c", "pass"],
            tmp_path / "missing-dir" / "stdout.log",
            tmp_path / "stderr.log",
        )


@pytest.mark.skipif(not hasattr(os, "getsid"), reason="sessions are POSIX-only")
def test_run_starts_task_in_its_own_session(tmp_path: Path) -> None:
    stdout_path = tmp_path / "stdout.log"
    handle = TaskExecutor().run(
        sys.executable,
        ["-c", "import os; print(os.getsid(0))"],
        stdout_path,
        tmp_path / "stderr.log",
    )

    assert handle.wait() == 0
    child_session = int(stdout_path.read_text().strip())
    assert child_session == handle.pid
    assert child_session != os.getsid(0)
