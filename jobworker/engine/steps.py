from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Optional

from jobworker.core.cancellation import CancellationToken
from jobworker.core.models import StepResult, StepStatus
from jobworker.errors import CancellationError, StepExecutionError

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.1
TERMINATE_GRACE_S = 5.0


def step_log_name(index: int) -> str:
    return f"step_{index}.log"


def run_step(
    result: StepResult,
    workspace: Path,
    log_dir: Path,
    cancel_token: Optional[CancellationToken] = None,
) -> StepResult:
    """
    Run one shell step with cwd=workspace, streaming combined stdout/stderr
    into log_dir/step_<index>.log.

    Mutates and returns `result`. Raises StepExecutionError on non-zero exit
    and CancellationError if the token fires before or during the step; in
    both cases `result` is already marked failed.
    """
    result.status = StepStatus.RUNNING
    start = time.monotonic()
    proc: Optional[subprocess.Popen] = None

    try:
        if cancel_token is not None and cancel_token.cancelled:
            raise CancellationError(cancel_token.reason or "cancelled")

        result.log = step_log_name(result.index)

        logger.info(f"Running step {result.index}: {result.command}")
        with open(log_dir / result.log, "wb") as log_file:
            proc = subprocess.Popen(
                result.command,
                shell=True,
                cwd=workspace,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                start_new_session=(os.name != "nt"),
            )
            exit_code = _wait(proc, cancel_token)

        result.exit_code = exit_code
        if exit_code is None:
            # killed on cancellation
            result.exit_code = proc.returncode
            raise CancellationError(cancel_token.reason or "cancelled")
        if exit_code != 0:
            raise StepExecutionError(result.index, result.command, exit_code)

        result.status = StepStatus.SUCCESS
        return result
    except BaseException:
        result.status = StepStatus.FAILED
        # e.g. KeyboardInterrupt from a forced shutdown while waiting
        if proc is not None and proc.poll() is None:
            logger.warning(f"Step {result.index} interrupted, terminating process {proc.pid}")
            terminate(proc)
        raise
    finally:
        result.duration_ms = int((time.monotonic() - start) * 1000)


def _wait(proc: subprocess.Popen, cancel_token: Optional[CancellationToken]) -> Optional[int]:
    """Wait for the child; returns its exit code, or None if it was killed on cancellation."""
    if cancel_token is None:
        return proc.wait()

    while True:
        try:
            return proc.wait(timeout=POLL_INTERVAL_S)
        except subprocess.TimeoutExpired:
            pass
        if cancel_token.cancelled:
            logger.warning(f"Cancelling step process {proc.pid}: {cancel_token.reason}")
            terminate(proc)
            return None


def terminate(proc: subprocess.Popen) -> None:
    """SIGTERM the child's process group, SIGKILL it if still alive after a grace period."""
    try:
        if os.name != "nt":
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        pass

    try:
        proc.wait(timeout=TERMINATE_GRACE_S)
        return
    except subprocess.TimeoutExpired:
        pass

    try:
        if os.name != "nt":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    proc.wait()
