from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from jobworker.core.cancellation import CancellationToken
from jobworker.core.models import ExecutionResult, RunStatus
from jobworker.engine.manifest import ManifestRecorder
from jobworker.engine.steps import run_step
from jobworker.engine.sync import sync_results
from jobworker.engine.workspace import (
    RESULTS_DIRNAME,
    prepare_workspace,
    preserved_cwd,
    remove_workspace,
    stage_sources,
)
from jobworker.errors import CancellationError, ConfigurationError, StepExecutionError

logger = logging.getLogger(__name__)

JOB_CONFIG_FILENAME = "job.json"
CANCELLED_EXIT_CODE = 124  # same convention as coreutils `timeout`


def load_job_config(workspace: Path, override_config: Optional[Dict[str, Any]] = None) -> List[str]:
    """
    Resolve the ordered step list, preferring override_config over job.json.

    Raises:
        ConfigurationError: job.json missing or unparseable, or steps is not a list of strings
    """
    if override_config is not None:
        config = override_config
    else:
        config_path = workspace / JOB_CONFIG_FILENAME
        if not config_path.is_file():
            raise ConfigurationError(f"Job definition not found at {config_path}")
        try:
            config = json.loads(config_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Job definition at {config_path} is not valid JSON: {e}") from e

    steps = config.get("steps") if isinstance(config, dict) else None
    if not isinstance(steps, list):
        raise ConfigurationError('Job configuration must contain a "steps" array')
    if not all(isinstance(s, str) for s in steps):
        raise ConfigurationError('Every entry of "steps" must be a command string')
    return steps


def _run_steps(
    commands: Sequence[str],
    workspace: Path,
    results_dir: Path,
    recorder: ManifestRecorder,
    cancel_token: Optional[CancellationToken],
) -> Optional[Exception]:
    """Run steps in order, stopping at the first failure or cancellation. Returns that failure."""
    for index, command in enumerate(commands):
        step = recorder.add_step(index, command)
        try:
            run_step(step, workspace, results_dir, cancel_token)
        except (StepExecutionError, CancellationError) as e:
            return e
    return None


def execute_job(
    source_root: str | Path,
    workspace_root: str | Path,
    job_id: str,
    override_config: Optional[Dict[str, Any]] = None,
    cancel_token: Optional[CancellationToken] = None,
    job_dir: Optional[str | Path] = None,
) -> ExecutionResult:
    """
    Run one attempt of a job.

    Layout:
        <source_root>/<job_id>/            job sources (job.json, inputs, ...)
        <source_root>/<job_id>/results/    manifest, step logs, synced artifacts
        <workspace_root>/<job_id>/         ephemeral workspace, removed on return

    When job_dir is given it replaces <source_root>/<job_id> and source_root
    is ignored.

    Never raises: every failure is recorded in the returned manifest, and the
    classified exception is returned as `failure`.
    """
    recorder = ManifestRecorder(job_id)
    exit_code = 0
    failure: Optional[BaseException] = None
    results_dir: Optional[Path] = None
    workspace: Optional[Path] = None

    with preserved_cwd():
        try:
            # resolve before anything can change the process cwd
            if job_dir is not None:
                source_dir = Path(job_dir).resolve()
            else:
                source_dir = Path(source_root).resolve() / job_id
            workspace = Path(workspace_root).resolve() / job_id
            results_dir = source_dir / RESULTS_DIRNAME
            results_dir.mkdir(parents=True, exist_ok=True)

            prepare_workspace(workspace)
            stage_sources(source_dir, workspace)

            commands = load_job_config(workspace, override_config)
            logger.info(f"Job {job_id}: {len(commands)} step(s)", extra={"job_id": job_id})

            failure = _run_steps(commands, workspace, results_dir, recorder, cancel_token)
            if isinstance(failure, StepExecutionError):
                exit_code = failure.exit_code
            elif isinstance(failure, CancellationError):
                exit_code = CANCELLED_EXIT_CODE

            if exit_code == 0:
                recorder.finish(RunStatus.SUCCESS)
            else:
                recorder.fail(str(failure))

            sync_results(workspace, results_dir)
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=not isinstance(e, ConfigurationError))
            failure = e
            exit_code = exit_code or 1
            recorder.fail(str(e))
        finally:
            recorder.stamp_end()
            recorder.persist(results_dir)
            if workspace is not None:
                remove_workspace(workspace)

    manifest = recorder.manifest
    logger.info(
        f"Job {job_id} finished: status={manifest.status} exit_code={exit_code} "
        f"steps={len(manifest.steps)} duration_ms={manifest.timing.duration_ms}",
        extra={"job_id": job_id},
    )
    return ExecutionResult(status=manifest.status, exit_code=exit_code, manifest=manifest, failure=failure)
