"""Subprocess helpers for the external tools crossdeploy drives.

Docker, scp and ssh output carries diagnostics the operator needs verbatim
(compiler line numbers, ABI mismatch symptoms), so it is echoed to the
terminal as it arrives and teed to a log file, with a bounded tail kept for
error reports.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
import threading
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)

# Number of trailing output lines kept for diagnostics
DIAGNOSTIC_TAIL_LINES = 60


@dataclass
class ProcessResult:
    """Result of a streamed process run.

    Attributes:
        exit_code: Process exit status (-1 on timeout).
        command: The command that was executed, shell-quoted.
        tail: Last lines of combined stdout/stderr.
        timed_out: Whether the process was killed on timeout.
        log_path: Log file the output was teed to, if any.
    """

    exit_code: int
    command: str
    tail: str
    timed_out: bool = False
    log_path: Path | None = None

    @property
    def success(self) -> bool:
        """Whether the process exited with status 0."""
        return self.exit_code == 0 and not self.timed_out


def run_streaming(
    cmd: Sequence[str],
    log_path: Path | None = None,
    cwd: Path | None = None,
    timeout: float | None = None,
    echo: TextIO | None = None,
    tail_lines: int = DIAGNOSTIC_TAIL_LINES,
) -> ProcessResult:
    """Run a command, echoing and logging its combined output line by line.

    Args:
        cmd: Command as list of strings.
        log_path: Optional log file; output is appended.
        cwd: Working directory.
        timeout: Seconds before the process is killed (None = no timeout).
        echo: Stream for verbatim output (defaults to sys.stdout).
        tail_lines: Number of trailing lines kept in the result.

    Returns:
        ProcessResult with exit status and output tail.

    Raises:
        OSError: If the executable cannot be started.
        KeyboardInterrupt: Re-raised after the child is terminated.
    """
    cmd_str = shlex.join(cmd)
    out = echo if echo is not None else sys.stdout
    tail: deque[str] = deque(maxlen=tail_lines)
    started_at = datetime.now(timezone.utc)

    logger.debug("Executing: %s", cmd_str)

    log_file = None
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = log_path.open("a", encoding="utf-8")
        log_file.write(f"# Command: {cmd_str}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.flush()

    proc = subprocess.Popen(
        list(cmd),
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
        bufsize=1,
    )

    timed_out = threading.Event()
    timer: threading.Timer | None = None
    if timeout is not None:

        def _kill() -> None:
            timed_out.set()
            proc.kill()

        timer = threading.Timer(timeout, _kill)
        timer.daemon = True
        timer.start()

    try:
        for line in proc.stdout or ():
            out.write(line)
            out.flush()
            tail.append(line)
            if log_file is not None:
                log_file.write(line)
        exit_code = proc.wait()
    except KeyboardInterrupt:
        proc.terminate()
        try:
            proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        raise
    finally:
        if timer is not None:
            timer.cancel()
        if proc.stdout is not None:
            proc.stdout.close()
        if log_file is not None:
            finished_at = datetime.now(timezone.utc)
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {proc.returncode}\n")
            log_file.close()

    if timed_out.is_set():
        logger.error("Command timed out after %s seconds: %s", timeout, cmd_str)
        exit_code = -1

    return ProcessResult(
        exit_code=exit_code,
        command=cmd_str,
        tail="".join(tail),
        timed_out=timed_out.is_set(),
        log_path=log_path,
    )


def run_quiet(
    cmd: Sequence[str],
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a short command and capture its output without echoing it.

    Args:
        cmd: Command as list of strings.
        timeout: Timeout in seconds.

    Returns:
        CompletedProcess with captured text output.
    """
    logger.debug("Executing: %s", shlex.join(cmd))
    return subprocess.run(
        list(cmd),
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


__all__ = ["DIAGNOSTIC_TAIL_LINES", "ProcessResult", "run_quiet", "run_streaming"]
