"""
Worker CLI - Run one worker cycle, or run a job without the queue.

Usage:
  jobworker worker --queue-url https://sqs... --results-queue-url https://sqs...
  jobworker worker --dry-run [--payload test-payload.json]
  jobworker run my-job --jobs-dir ./jobs --step 'echo hello'

Environment variables:
  JOBWORKER_REGION, JOBWORKER_QUEUE_URL, JOBWORKER_RESULTS_QUEUE_URL, JOBWORKER_DLQ_URL
  JOBWORKER_JOBS_DIR, JOBWORKER_WORKSPACES_DIR, JOBWORKER_JOB_TIMEOUT_MINUTES
  JOBWORKER_VISIBILITY_TIMEOUT, JOBWORKER_VISIBILITY_EXTEND_EVERY
"""

import json
import logging
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

console = Console()
logger = logging.getLogger("jobworker.cli.worker")

# Load environment variables from .env file if present
load_dotenv()


@click.command()
@click.option('--queue-url', type=str, help='Job queue URL (default: JOBWORKER_QUEUE_URL env)')
@click.option('--results-queue-url', type=str, help='Queue receiving result messages (default: JOBWORKER_RESULTS_QUEUE_URL env)')
@click.option('--dlq-url', type=str, help='Queue receiving rejected payloads (default: JOBWORKER_DLQ_URL env)')
@click.option('--jobs-dir', type=str, help='Root of job source directories (default: JOBWORKER_JOBS_DIR env or ./jobs)')
@click.option('--workspaces-dir', type=str, help='Root of ephemeral workspaces (default: JOBWORKER_WORKSPACES_DIR env or ./workspaces)')
@click.option('--timeout-minutes', type=float, help='Job deadline in minutes, 0 disables (default: 60)')
@click.option('--poll-wait', type=int, help='SQS long-poll wait time (seconds)')
@click.option('--empty-polls', type=int, help='Exit after N empty polls')
@click.option('--region', type=str, help='AWS region (default: from JOBWORKER_REGION env or us-east-1)')
@click.option('--dry-run', is_flag=True, help='Run the job described in a local payload file instead of polling')
@click.option('--payload', type=str, default='test-payload.json', show_default=True, help='Payload file for --dry-run')
@click.pass_context
def worker(
    ctx,
    queue_url,
    results_queue_url,
    dlq_url,
    jobs_dir,
    workspaces_dir,
    timeout_minutes,
    poll_wait,
    empty_polls,
    region,
    dry_run,
    payload,
):
    """Take at most one job off the queue, run it and publish its result."""

    # Setup logging FIRST so everything after is JSON
    from jobworker.logging_setup import setup_logging
    setup_logging(verbose=(ctx.obj or {}).get('verbose', False))

    if dry_run:
        sys.exit(_dry_run(payload, jobs_dir, workspaces_dir, timeout_minutes))

    from jobworker.config import WorkerConfig
    from jobworker.core.worker_runtime import WorkerRuntime
    from jobworker.io.sqs import SQSClient

    try:
        cfg = WorkerConfig.from_env(
            queue_url=queue_url,
            results_queue_url=results_queue_url,
            dlq_url=dlq_url,
            jobs_dir=jobs_dir,
            workspaces_dir=workspaces_dir,
            job_timeout_minutes=timeout_minutes,
            poll_wait_seconds=poll_wait,
            empty_polls_before_exit=empty_polls,
            aws_region=region,
        )
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info("Starting worker", extra={"queue_url": cfg.queue_url, "region": cfg.aws_region, "jobs_dir": cfg.jobs_dir})

    runtime = WorkerRuntime(cfg=cfg, sqs=SQSClient(cfg.aws_region, endpoint_url=cfg.endpoint_url))
    runtime.install_signal_handlers()

    try:
        exit_code = runtime.run_once()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
        exit_code = 1
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        exit_code = 1

    logger.info(f"Worker exiting with code {exit_code}")
    sys.exit(exit_code)


def _dry_run(payload_file, jobs_dir, workspaces_dir, timeout_minutes) -> int:
    from jobworker.core.cancellation import deadline
    from jobworker.core.models import JobDescriptor
    from jobworker.core.worker_runtime import build_result_message
    from jobworker.engine.executor import execute_job
    from jobworker.errors import PayloadError

    payload_path = Path(payload_file).resolve()
    if not payload_path.exists():
        console.print(f"[red]Error:[/red] {payload_path} not found.")
        return 1

    try:
        data = json.loads(payload_path.read_text(encoding='utf-8'))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        console.print(f"[red]Error:[/red] Failed to parse {payload_path.name}: {e}")
        return 1
    if not isinstance(data, dict):
        console.print(f"[red]Error:[/red] {payload_path.name} must contain a JSON object")
        return 1

    if not data.get('id'):
        data['id'] = 'dry-run'
    try:
        job = JobDescriptor.from_dict(data)
    except PayloadError as e:
        console.print(f"[red]Error:[/red] Invalid payload in {payload_path.name}: {e}")
        return 1

    source_root = job.source_root or jobs_dir or os.environ.get('JOBWORKER_JOBS_DIR', '.')
    job_dir = job.job_dir(source_root)
    workspaces_dir = workspaces_dir or os.environ.get('JOBWORKER_WORKSPACES_DIR', './workspaces')

    console.print(f"Executing dry run for job [cyan]{job.id}[/cyan] from {job_dir}")
    with deadline(timeout_minutes) as token:
        result = execute_job(
            source_root,
            workspaces_dir,
            job.id,
            job.override_config,
            token,
            job_dir=job_dir,
        )

    message = build_result_message(job.id, job_dir, result.status, result.exit_code, error=result.manifest.error)
    console.print_json(message.to_json())
    return 0


@click.command()
@click.argument('job_id')
@click.option('--jobs-dir', type=str, default=lambda: os.environ.get('JOBWORKER_JOBS_DIR', './jobs'), help='Root of job source directories')
@click.option('--workspaces-dir', type=str, default=lambda: os.environ.get('JOBWORKER_WORKSPACES_DIR', './workspaces'), help='Root of ephemeral workspaces')
@click.option('--step', 'steps', multiple=True, help='Step command overriding job.json. Can be specified multiple times.')
@click.option('--timeout-minutes', type=float, default=0, help='Job deadline in minutes (0 = none)')
def run(job_id, jobs_dir, workspaces_dir, steps, timeout_minutes):
    """Run a job directory locally, without the queue."""
    from jobworker.core.cancellation import deadline
    from jobworker.core.models import JobDescriptor
    from jobworker.engine.executor import execute_job
    from jobworker.errors import PayloadError

    try:
        JobDescriptor.from_dict({'id': job_id})
    except PayloadError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    override = {'steps': list(steps)} if steps else None
    with deadline(timeout_minutes) as token:
        result = execute_job(jobs_dir, workspaces_dir, job_id, override, token)

    table = Table(title=f"Job {job_id}")
    table.add_column("#", justify="right")
    table.add_column("Command")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Duration (ms)", justify="right")
    for step in result.manifest.steps:
        color = "green" if step.status == "success" else "red"
        table.add_row(
            str(step.index),
            step.command,
            f"[{color}]{step.status}[/{color}]",
            "" if step.exit_code is None else str(step.exit_code),
            str(step.duration_ms),
        )
    console.print(table)

    if result.manifest.error:
        console.print(f"[red]Error:[/red] {result.manifest.error}")
    console.print(f"Status: [bold]{result.status}[/bold] (exit code {result.exit_code})")
    sys.exit(result.exit_code)
