"""Subprocess runner for task commands."""

from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path
from typing import IO

from fleet_worker.worker.errors import TaskExecutionError

logger = logging.getLogger(__name__)


class ProcessHandle:
    """Running task process with its two log file handles.

    ``wait()`` is the completion signal; it closes both log files whether the
    process exited on its own or was killed.
    """

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        stdout_handle: IO[bytes],
        stderr_handle: IO[bytes],
    ) -> None:
        self._process = process
        self._stdout_handle = stdout_handle
        self._stderr_handle = stderr_handle
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def closed(self) -> bool:
        return self._closed

    def wait(self) -> int:
        try:
            return self._process.wait()
        finally:
            self.close()

    def kill(self) -> None:
        """Kill the process; no-op once it has exited."""

        with self._lock:
            if self._process.poll() is not None:
                return
            try:
                self._process.kill()
            except ProcessLookupError:
                return
        logger.info("Killed task process %s", self._process.pid)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stdout_handle.close()
            self._stderr_handle.close()


class TaskExecutor:
    """Spawns task commands with stdin suppressed and output sent to log files.

    Each task gets its own session, so terminal signals aimed at the agent do
    not reach it; only :meth:`ProcessHandle.kill` stops a running task.
    """

    def run(
        self,
        command: str,
        arguments: list[str],
        stdout_path: Path,
        stderr_path: Path,
    ) -> ProcessHandle:
        try:
            stdout_handle = stdout_path.open("wb")
        except OSError as error:
            raise TaskExecutionError(f"Cannot open log file {stdout_path}: {error}") from error
        try:
            stderr_handle = stderr_path.open("wb")
        except OSError as error:
            stdout_handle.close()
            raise TaskExecutionError(f"Cannot open log file {stderr_path}: {error}") from error
        try:
            process = subprocess.Popen(  # noqa: S603
                [command, *arguments],
                stdin=subprocess.DEVNULL,
                stdout=stdout_handle,
                stderr=stderr_handle,
                start_new_session=True,
            )
        except OSError as error:
            stdout_handle.close()
            stderr_handle.close()
            msg = f"Failed to start task command {command!r}: {error}"
            raise TaskExecutionError(msg) from error
        logger.debug("Started task process %s: %s %s", process.pid, command, arguments)
        return ProcessHandle(process, stdout_handle, stderr_handle)
