from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AckPolicy:
    """
    What to do with the inbound message once the engine has finished.

    A job that ran to a defined conclusion (bad job.json, failing step) is
    acknowledged by default: retrying would re-run its side effects.
    Retryable failures (deadline exceeded, unexpected error) are released
    so another worker can pick the message up.
    """
    ack_terminal_failures: bool = True
    nak_retryable_failures: bool = True

    def should_ack(self, failure: Optional[BaseException], retryable: bool) -> bool:
        if failure is None:
            return True
        if retryable:
            return not self.nak_retryable_failures
        return self.ack_terminal_failures


@dataclass(frozen=True)
class WorkerConfig:
    aws_region: str
    queue_url: str
    results_queue_url: Optional[str] = None
    dlq_url: Optional[str] = None    # rejected payloads are forwarded here before deletion

    jobs_dir: str = "./jobs"
    workspaces_dir: str = "./workspaces"

    job_timeout_minutes: float = 60  # <= 0 disables the deadline

    poll_wait_seconds: int = 20
    empty_polls_before_exit: int = 1       # idle cycle: give up after N empty long-polls
    visibility_timeout_seconds: int = 450  # 7.5 minutes
    visibility_extend_every_seconds: int = 60

    endpoint_url: Optional[str] = None     # e.g. localstack / elasticmq

    ack_policy: AckPolicy = field(default_factory=AckPolicy)

    @classmethod
    def from_env(cls, **overrides) -> "WorkerConfig":
        """
        Build a config from JOBWORKER_* environment variables.

        Keyword arguments whose value is not None take precedence over the
        environment (CLI options).
        """
        values = {
            "aws_region": os.environ.get("JOBWORKER_REGION", "us-east-1"),
            "queue_url": os.environ.get("JOBWORKER_QUEUE_URL", ""),
            "results_queue_url": os.environ.get("JOBWORKER_RESULTS_QUEUE_URL") or None,
            "dlq_url": os.environ.get("JOBWORKER_DLQ_URL") or None,
            "jobs_dir": os.environ.get("JOBWORKER_JOBS_DIR", "./jobs"),
            "workspaces_dir": os.environ.get("JOBWORKER_WORKSPACES_DIR", "./workspaces"),
            "job_timeout_minutes": float(os.environ.get("JOBWORKER_JOB_TIMEOUT_MINUTES", "60")),
            "poll_wait_seconds": int(os.environ.get("JOBWORKER_POLL_WAIT_SECONDS", "20")),
            "empty_polls_before_exit": int(os.environ.get("JOBWORKER_EMPTY_POLLS", "1")),
            "visibility_timeout_seconds": int(os.environ.get("JOBWORKER_VISIBILITY_TIMEOUT", "450")),
            "visibility_extend_every_seconds": int(os.environ.get("JOBWORKER_VISIBILITY_EXTEND_EVERY", "60")),
            "endpoint_url": os.environ.get("JOBWORKER_SQS_ENDPOINT_URL") or None,
            "ack_policy": AckPolicy(
                ack_terminal_failures=_env_bool("JOBWORKER_ACK_TERMINAL_FAILURES", True),
                nak_retryable_failures=_env_bool("JOBWORKER_NAK_RETRYABLE_FAILURES", True),
            ),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        if not values["queue_url"]:
            raise ValueError("Missing queue URL. Provide --queue-url or set JOBWORKER_QUEUE_URL")
        return cls(**values)
