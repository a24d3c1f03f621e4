"""
Process runner for external tools.

Runs one command to completion, capturing stdout and stderr while logging
each line at DEBUG. The child is started in its own session so that a
timeout or cancellation can stop the whole process group: SIGTERM first,
then SIGKILL once the grace period has passed.

All interpretation of tool output lives elsewhere (see provisionctl.parsing);
this module only returns RawOutput.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from provisionctl.contracts.timeouts import (
    PROCESS_POLL_INTERVAL_S,
    PROCESS_TERMINATE_GRACE_S,
)
from provisionctl.errors import DeadlineExceeded, OperationCancelled, ProcessError, ProcessTimeout

logger = logging.getLogger(__name__)

__all__ = ["RawOutput", "ProcessRunner", "OperationControl", "raise_for_output"]


@dataclass(frozen=True)
class RawOutput:
    """Captured result of one external command."""
    command: Tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


class _StreamReader(threading.Thread):
    """Drains one pipe into a list, logging each line."""

    def __init__(self, stream, label: str, program: str):
        super().__init__(daemon=True)
        self.stream = stream
        self.label = label
        self.program = program
        self.lines: List[str] = []

    def run(self) -> None:
        for line in iter(self.stream.readline, ""):
            self.lines.append(line)
            logger.debug(f"[{self.program} {self.label}] {line.rstrip()}")
        self.stream.close()

    @property
    def text(self) -> str:
        return "".join(self.lines)


class ProcessRunner:
    """
    Runs external commands with timeout and cancellation.

    Args:
        terminate_grace: Seconds between SIGTERM and SIGKILL
        poll_interval: Seconds between timeout/cancellation checks
    """

    def __init__(
        self,
        terminate_grace: float = PROCESS_TERMINATE_GRACE_S,
        poll_interval: float = PROCESS_POLL_INTERVAL_S,
    ):
        self.terminate_grace = terminate_grace
        self.poll_interval = poll_interval

    def run(
        self,
        command: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        check: bool = True,
    ) -> RawOutput:
        """
        Run `command` and wait for it to exit, time out, or be cancelled.

        Args:
            command: Program and arguments (never passed through a shell)
            cwd: Working directory
            env: Extra environment variables layered over os.environ
            timeout: Seconds before the process group is stopped
            cancel: Event that stops the process group when set
            check: Raise on non-zero exit, timeout or cancellation

        Raises:
            ProcessError: The program is missing or exited non-zero (check=True)
            ProcessTimeout: The timeout elapsed (check=True)
            OperationCancelled: `cancel` was set (check=True)
        """
        command = tuple(str(part) for part in command)
        program = Path(command[0]).name
        full_env: Optional[Dict[str, str]] = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        logger.info(f"Running {' '.join(command)} (cwd={cwd or os.getcwd()})")
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                command,
                cwd=str(cwd) if cwd else None,
                env=full_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            raise ProcessError(f"cannot start {program}: {e}", command=command) from e

        stdout_reader = _StreamReader(proc.stdout, "stdout", program)
        stderr_reader = _StreamReader(proc.stderr, "stderr", program)
        stdout_reader.start()
        stderr_reader.start()

        timed_out = False
        cancelled = False
        deadline = started + timeout if timeout is not None else None
        while proc.poll() is None:
            if cancel is not None and cancel.is_set():
                cancelled = True
            elif deadline is not None and time.monotonic() >= deadline:
                timed_out = True
            if timed_out or cancelled:
                self._stop(proc, program)
                break
            time.sleep(self.poll_interval)

        exit_code = proc.wait()
        stdout_reader.join()
        stderr_reader.join()
        duration = time.monotonic() - started

        result = RawOutput(
            command=command,
            exit_code=exit_code,
            stdout=stdout_reader.text,
            stderr=stderr_reader.text,
            duration_seconds=duration,
            timed_out=timed_out,
            cancelled=cancelled,
        )
        logger.info(f"{program} exited with code {exit_code} after {duration:.1f}s")

        if check:
            raise_for_output(result)
        return result

    def _stop(self, proc: subprocess.Popen, program: str) -> None:
        """SIGTERM the process group, then SIGKILL after the grace period."""
        logger.warning(f"Stopping {program} (pid {proc.pid})")
        self._signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"{program} ignored SIGTERM, sending SIGKILL")
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            proc.wait()

    @staticmethod
    def _signal(proc: subprocess.Popen, sig: int) -> None:
        try:
            if sys.platform == "win32":
                proc.send_signal(sig)
            else:
                os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass  # already exited


def raise_for_output(result: RawOutput) -> None:
    """Raise the matching ProcessError subclass unless `result` succeeded."""
    program = Path(result.command[0]).name if result.command else "process"
    details = dict(
        command=result.command,
        exit_code=result.exit_code,
        stdout=result.stdout,
        stderr=result.stderr,
    )
    if result.cancelled:
        raise OperationCancelled(f"{program} was cancelled", **details)
    if result.timed_out:
        raise ProcessTimeout(
            f"{program} timed out after {result.duration_seconds:.1f}s", **details
        )
    if result.exit_code != 0:
        raise ProcessError(f"{program} exited with code {result.exit_code}", **details)


@dataclass
class OperationControl:
    """Cancellation and overall deadline shared by the tool runs of one transition."""
    cancel: Optional[threading.Event] = None
    deadline: Optional[float] = None  # time.monotonic() value

    @classmethod
    def start(
        cls,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> "OperationControl":
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(cancel=cancel, deadline=deadline)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def timeout_for(self, tool_timeout: float) -> float:
        """
        Timeout for the next tool invocation.

        Raises:
            OperationCancelled: If cancellation was requested
            DeadlineExceeded: If the overall deadline has already passed
        """
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled("operation was cancelled")
        remaining = self.remaining()
        if remaining is None:
            return tool_timeout
        if remaining <= 0:
            raise DeadlineExceeded("operation deadline exceeded")
        return min(tool_timeout, remaining)
