"""Tests for single-step execution."""

import os
import time

import pytest

from jobworker.core.cancellation import CancellationToken
from jobworker.core.models import StepResult
from jobworker.engine.steps import run_step
from jobworker.errors import StepExecutionError


class InterruptOnceStarted(CancellationToken):
    """Raises KeyboardInterrupt from the wait loop once the child has written its pid."""

    def __init__(self, pid_file):
        super().__init__()
        self.pid_file = pid_file

    @property
    def cancelled(self):
        if self.pid_file.exists() and self.pid_file.read_text().strip():
            raise KeyboardInterrupt("Forced shutdown by second signal")
        return False


def test_success(tmp_path):
    step = run_step(StepResult(0, "echo ok"), tmp_path, tmp_path)

    assert step.status == "success"
    assert step.exit_code == 0
    assert "ok" in (tmp_path / "step_0.log").read_text()


def test_non_zero_exit(tmp_path):
    step = StepResult(2, "echo boom >&2; exit 6")

    with pytest.raises(StepExecutionError) as exc_info:
        run_step(step, tmp_path, tmp_path)

    assert exc_info.value.exit_code == 6
    assert step.status == "failed"
    assert step.exit_code == 6
    assert "boom" in (tmp_path / "step_2.log").read_text()


@pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX only")
def test_interrupt_kills_child(tmp_path):
    pid_file = tmp_path / "child.pid"
    step = StepResult(0, f"echo $$ > {pid_file}; exec sleep 30")

    started = time.monotonic()
    with pytest.raises(KeyboardInterrupt):
        run_step(step, tmp_path, tmp_path, InterruptOnceStarted(pid_file))

    assert time.monotonic() - started < 15
    assert step.status == "failed"
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.killpg(pid, 0)
