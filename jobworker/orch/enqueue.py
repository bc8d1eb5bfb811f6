from __future__ import annotations
import json
import logging
from typing import Iterable, List, Optional

from jobworker.core.models import JobDescriptor
from jobworker.io.sqs import SQSClient

logger = logging.getLogger(__name__)


def job_body(job: JobDescriptor) -> str:
    """Serialize a job descriptor the way the worker expects to parse it."""
    payload = {'id': job.id}
    if job.source_root:
        payload['sourceRoot'] = job.source_root
    if job.work_dir:
        payload['workDir'] = job.work_dir
    if job.steps is not None:
        payload['steps'] = list(job.steps)
    return json.dumps(payload)


def enqueue_jobs(
    sqs: SQSClient,
    queue_url: str,
    jobs: Iterable[JobDescriptor],
) -> int:
    """
    Send one SQS message per job using batch operations.

    Each message has format: {'id': '...', 'sourceRoot'?: '...', 'workDir'?: '...', 'steps'?: [...]}
    with a job_id message attribute for easy filtering.

    Returns:
        Count of jobs enqueued
    """
    messages = [(job_body(job), job.id) for job in jobs]

    if messages:
        total = len(messages)
        logger.info(f"Enqueueing {total} jobs in batches...")
        count = sqs.send_batch(queue_url, messages)
        logger.info(f"Enqueued {count} jobs total")
        return count

    return 0


def read_job_list(file_path: str, source_root: Optional[str] = None) -> List[JobDescriptor]:
    """
    Read job ids from a file, one per line. Lines starting with # are comments.
    """
    jobs = []
    with open(file_path, 'r') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            if not line or line.startswith('#'):
                continue

            if len(line.split()) != 1 or '/' in line:
                logger.warning(f"Line {line_num}: Invalid job id, got: {line}")
                continue

            jobs.append(JobDescriptor(id=line, source_root=source_root))
    return jobs


def get_queue_stats(sqs: SQSClient, queue_url: str) -> dict:
    """
    Get queue statistics.

    Returns:
        Dict with queue attributes
    """
    attrs = sqs.get_queue_attributes(queue_url)

    return {
        'approximate_messages': int(attrs.get('ApproximateNumberOfMessages', 0)),
        'approximate_messages_not_visible': int(attrs.get('ApproximateNumberOfMessagesNotVisible', 0)),
        'approximate_messages_delayed': int(attrs.get('ApproximateNumberOfMessagesDelayed', 0)),
    }
