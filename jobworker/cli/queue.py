"""
Queue CLI - Manage the job queue.

Usage:
  jobworker queue enqueue --queue-url <url> --id my-job
  jobworker queue enqueue --queue-url <url> --id my-job --step 'make test'
  jobworker queue enqueue --queue-url <url> --file jobs.txt
  jobworker queue stats --queue-url <url>
"""

import os
import sys

import click
from rich.console import Console
from rich.table import Table

console = Console()


def get_sqs_client(region=None):
    """Get SQS client from environment."""
    from jobworker.io.sqs import SQSClient

    region = region or os.environ.get('JOBWORKER_REGION', 'us-east-1')
    return SQSClient(region, endpoint_url=os.environ.get('JOBWORKER_SQS_ENDPOINT_URL') or None)


def _resolve_queue_url(queue_url):
    queue_url = queue_url or os.environ.get('JOBWORKER_QUEUE_URL')
    if not queue_url:
        console.print("[red]Error:[/red] Must specify --queue-url or set JOBWORKER_QUEUE_URL")
        sys.exit(1)
    return queue_url


@click.group()
def queue():
    """Manage the job queue (enqueue, stats)."""
    pass


@queue.command()
@click.option('--queue-url', help='SQS queue URL (default: JOBWORKER_QUEUE_URL env)')
@click.option('--id', 'job_ids', multiple=True, help='Job id. Can be specified multiple times.')
@click.option('--file', type=click.Path(exists=True), help='File with job ids (one per line)')
@click.option('--step', 'steps', multiple=True, help='Step command overriding job.json (only with a single --id)')
@click.option('--source-root', help='Job source root sent with each job (default: the worker\'s jobs dir)')
@click.option('--region', help='AWS region (default: from JOBWORKER_REGION env or us-east-1)')
def enqueue(queue_url, job_ids, file, steps, source_root, region):
    """Enqueue jobs to the job queue."""
    from jobworker.core.models import JobDescriptor
    from jobworker.errors import TransportError
    from jobworker.orch.enqueue import enqueue_jobs, read_job_list

    queue_url = _resolve_queue_url(queue_url)

    if not file and not job_ids:
        console.print("[red]Error:[/red] Must specify either --file or --id")
        sys.exit(1)

    if file and job_ids:
        console.print("[red]Error:[/red] Cannot specify both --file and --id")
        sys.exit(1)

    if steps and len(job_ids) != 1:
        console.print("[red]Error:[/red] --step requires exactly one --id")
        sys.exit(1)

    if file:
        console.print(f"Enqueueing jobs from file: [cyan]{file}[/cyan]")
        jobs = read_job_list(file, source_root=source_root)
    else:
        jobs = [
            JobDescriptor(id=job_id, source_root=source_root, steps=list(steps) if steps else None)
            for job_id in job_ids
        ]

    try:
        count = enqueue_jobs(get_sqs_client(region), queue_url, jobs)
    except TransportError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Enqueued {count} job(s)")


@queue.command()
@click.option('--queue-url', help='SQS queue URL (default: JOBWORKER_QUEUE_URL env)')
@click.option('--region', help='AWS region (default: from JOBWORKER_REGION env or us-east-1)')
def stats(queue_url, region):
    """Show queue statistics."""
    from jobworker.errors import TransportError
    from jobworker.orch.enqueue import get_queue_stats

    queue_url = _resolve_queue_url(queue_url)

    try:
        queue_stats = get_queue_stats(get_sqs_client(region), queue_url)
    except TransportError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    table = Table(title="Queue Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Messages available", str(queue_stats['approximate_messages']))
    table.add_row("Messages in flight", str(queue_stats['approximate_messages_not_visible']))
    table.add_row("Messages delayed", str(queue_stats['approximate_messages_delayed']))
    console.print(table)
