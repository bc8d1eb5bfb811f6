from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from jobworker.config import WorkerConfig
from jobworker.core.cancellation import CancellationToken, deadline
from jobworker.core.models import (
    ExecutionResult,
    JobDescriptor,
    QueueMessage,
    ResultMessage,
    RunStatus,
)
from jobworker.engine.executor import execute_job
from jobworker.engine.manifest import MANIFEST_FILENAME
from jobworker.engine.workspace import RESULTS_DIRNAME
from jobworker.errors import PayloadError, RetryableTaskError, TerminalTaskError, TransportError
from jobworker.io.sqs import SQSClient

logger = logging.getLogger(__name__)

ExecuteFn = Callable[..., ExecutionResult]

EXIT_OK = 0
EXIT_FAILURE = 1


class WorkerState:
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    PROCESSING = "processing"
    PUBLISHING_RESULT = "publishing_result"
    TERMINATED = "terminated"


def classify_exception(exc: Optional[BaseException]) -> tuple[bool, str]:
    """
    Returns (retryable, reason).
    Default: retryable=True unless it's a TerminalTaskError.
    """
    if exc is None:
        return False, ""
    if isinstance(exc, TerminalTaskError):
        return False, str(exc)
    if isinstance(exc, RetryableTaskError):
        return True, str(exc)
    return True, f"{type(exc).__name__}: {exc}"


def build_result_message(
    job_id: str,
    job_dir: str | Path,
    status: str,
    exit_code: int,
    error: Optional[str] = None,
) -> ResultMessage:
    results_dir = Path(job_dir).resolve() / RESULTS_DIRNAME
    return ResultMessage(
        id=job_id,
        status=status,
        exit_code=exit_code,
        manifest_file=str(results_dir / MANIFEST_FILENAME),
        log_dir=str(results_dir),
        error=error,
    )


class VisibilityExtender:
    """
    Keeps an in-flight message hidden from other consumers while its job runs,
    by re-extending its visibility timeout every `interval` seconds.
    """

    def __init__(self, sqs: SQSClient, queue_url: str, receipt_handle: str, timeout_seconds: int, interval: float):
        self.sqs = sqs
        self.queue_url = queue_url
        self.receipt_handle = receipt_handle
        self.timeout_seconds = timeout_seconds
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "VisibilityExtender":
        if self.interval > 0:
            self._thread = threading.Thread(target=self._run, name="visibility-extender", daemon=True)
            self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sqs.change_visibility(self.queue_url, self.receipt_handle, self.timeout_seconds)
                logger.debug(f"Extended message visibility by {self.timeout_seconds}s")
            except TransportError as e:
                logger.warning(f"Failed to extend message visibility: {e}")


class WorkerRuntime:
    """
    Runs one worker cycle: take at most one job off the queue, execute it,
    publish exactly one result, then terminate.

    Flow:
    1. Connect: check the job queue is reachable
    2. Long-poll for one message (up to empty_polls_before_exit polls);
       retained (stale) messages are deleted without running anything
    3. Validate the payload; a bad payload is rejected permanently (exit 1)
    4. Run the engine under the job deadline, extending message visibility
    5. Ack + publish (exit 0) or publish failure + nak (exit 1), per AckPolicy
    """

    def __init__(self, cfg: WorkerConfig, sqs: SQSClient, execute: ExecuteFn = execute_job):
        self.cfg = cfg
        self.sqs = sqs
        self.execute = execute

        self.state = WorkerState.IDLE

        # Graceful shutdown flag
        self._shutdown_requested: bool = False
        # Single-slot busy state: set while a job is in flight
        self._processing_message: bool = False
        self._cancel_token: Optional[CancellationToken] = None

    def run_once(self) -> int:
        """Run one cycle and return the process exit code."""
        try:
            self.state = WorkerState.CONNECTING
            self._connect()

            self.state = WorkerState.SUBSCRIBED
            msg = self._poll()
            if msg is None:
                logger.info("No job received, exiting")
                return self._terminate(EXIT_OK)

            exit_code = self.handle_message(msg)
            if exit_code is None:
                # refused by the busy guard; nothing of ours ran
                exit_code = EXIT_OK
            return self._terminate(exit_code)
        except TransportError as e:
            logger.error(f"Queue transport failure: {e}", exc_info=True)
            return self._terminate(EXIT_FAILURE)

    def handle_message(self, msg: QueueMessage) -> Optional[int]:
        """
        Process one delivery. Returns the exit code for the cycle, or None if
        the delivery was refused because another job is in flight.
        """
        if self._processing_message:
            logger.warning(f"Job already in flight, releasing message {msg.message_id} for redelivery")
            self.sqs.release(self.cfg.queue_url, msg.receipt_handle)
            return None

        try:
            job = JobDescriptor.from_body(msg.body)
        except PayloadError as e:
            logger.error(f"Rejecting message {msg.message_id}: {e}")
            self._reject(msg)
            return EXIT_FAILURE

        job_dir = job.job_dir(self.cfg.jobs_dir)
        logger.info(
            f"Received job {job.id} (message_id={msg.message_id}, receive_count={msg.receive_count})",
            extra={"job_id": job.id},
        )

        self.state = WorkerState.PROCESSING
        self._processing_message = True
        try:
            result = self._execute(msg, job, job_dir)
        except Exception as e:
            logger.error(f"Job {job.id} raised unexpectedly: {e}", exc_info=True)
            self.state = WorkerState.PUBLISHING_RESULT
            failure = build_result_message(job.id, job_dir, RunStatus.FAILED, EXIT_FAILURE, error=str(e) or type(e).__name__)
            self._publish_best_effort(failure)
            self.sqs.release(self.cfg.queue_url, msg.receipt_handle)
            return EXIT_FAILURE
        finally:
            self._processing_message = False
            self._cancel_token = None

        return self._complete(msg, job, job_dir, result)

    def shutdown(self) -> None:
        self.state = WorkerState.TERMINATED
        try:
            self.sqs.close()
        except Exception as e:
            logger.warning(f"Failed to close SQS client: {e}")

    def install_signal_handlers(self) -> None:
        """
        Handles SIGTERM (systemd/container stop) and SIGINT (Ctrl+C).

        - No job running: stop polling.
        - Job running: cancel it; the running step is killed and the message
          is released for redelivery.
        - Second signal: force exit.
        """

        def signal_handler(signum: int, frame: Any) -> None:
            sig_name = signal.Signals(signum).name
            if self._shutdown_requested:
                logger.warning(f"Received second {sig_name} signal. Forcing immediate shutdown.")
                raise KeyboardInterrupt("Forced shutdown by second signal")

            self._shutdown_requested = True
            token = self._cancel_token
            if token is not None:
                logger.info(f"Received {sig_name} signal. Cancelling the running job.")
                token.cancel(f"Worker received {sig_name}")
            else:
                logger.info(f"Received {sig_name} signal. Stopping SQS polling.")

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)
        logger.debug("Signal handlers installed (SIGTERM, SIGINT)")

    # ---- internals ----

    def _connect(self) -> None:
        attrs = self.sqs.get_queue_attributes(self.cfg.queue_url)
        logger.info(
            f"Connected to job queue {self.cfg.queue_url} "
            f"(~{attrs.get('ApproximateNumberOfMessages', '?')} visible messages)"
        )

    def _poll(self) -> Optional[QueueMessage]:
        polls = max(1, self.cfg.empty_polls_before_exit)
        for attempt in range(1, polls + 1):
            if self._shutdown_requested:
                logger.info("Shutdown requested, stopping SQS polling")
                return None

            msg = self.sqs.receive_one(
                queue_url=self.cfg.queue_url,
                wait_seconds=self.cfg.poll_wait_seconds,
                visibility_timeout=self.cfg.visibility_timeout_seconds,
            )
            if msg is None:
                logger.info(f"No messages received ({attempt}/{polls})")
                continue

            if msg.retained:
                logger.info(f"Clearing retained message {msg.message_id} without executing it")
                self.sqs.delete(self.cfg.queue_url, msg.receipt_handle)
                continue

            if self._shutdown_requested:
                logger.info(f"Shutdown requested, releasing message {msg.message_id} unprocessed")
                self.sqs.release(self.cfg.queue_url, msg.receipt_handle)
                return None
            return msg
        return None

    def _execute(self, msg: QueueMessage, job: JobDescriptor, job_dir: Path) -> ExecutionResult:
        extender = VisibilityExtender(
            self.sqs,
            self.cfg.queue_url,
            msg.receipt_handle,
            self.cfg.visibility_timeout_seconds,
            self.cfg.visibility_extend_every_seconds,
        )
        with extender, deadline(self.cfg.job_timeout_minutes) as token:
            self._cancel_token = token
            return self.execute(
                job.source_root or self.cfg.jobs_dir,
                self.cfg.workspaces_dir,
                job.id,
                job.override_config,
                token,
                job_dir=job_dir,
            )

    def _complete(self, msg: QueueMessage, job: JobDescriptor, job_dir: Path, result: ExecutionResult) -> int:
        self.state = WorkerState.PUBLISHING_RESULT
        retryable, reason = classify_exception(result.failure)
        error = result.manifest.error or (reason or None)
        message = build_result_message(
            job.id,
            job_dir,
            result.status,
            result.exit_code,
            error=error if result.status != RunStatus.SUCCESS else None,
        )

        if self.cfg.ack_policy.should_ack(result.failure, retryable):
            # The job reached a defined conclusion; redelivery would re-run its side effects.
            self.sqs.delete(self.cfg.queue_url, msg.receipt_handle)
            self._publish(message)
            logger.info(f"Job {job.id} acknowledged with status {result.status}", extra={"job_id": job.id})
            return EXIT_OK

        logger.warning(
            f"Job {job.id} failed (retryable={retryable}): {reason}. Releasing message for redelivery",
            extra={"job_id": job.id},
        )
        self._publish_best_effort(message)
        self.sqs.release(self.cfg.queue_url, msg.receipt_handle)
        return EXIT_FAILURE

    def _reject(self, msg: QueueMessage) -> None:
        """Remove a message permanently, keeping a copy in the DLQ when one is configured."""
        if self.cfg.dlq_url:
            self.sqs.send_raw(self.cfg.dlq_url, msg.body)
            logger.info(f"Forwarded message {msg.message_id} to DLQ")
        self.sqs.delete(self.cfg.queue_url, msg.receipt_handle)

    def _publish(self, message: ResultMessage) -> None:
        if not self.cfg.results_queue_url:
            logger.warning(f"No results queue configured, result not published: {message.to_json()}")
            return
        self.sqs.send_raw(self.cfg.results_queue_url, message.to_json(), job_id=message.id)
        logger.info(f"Result for job {message.id} published")

    def _publish_best_effort(self, message: ResultMessage) -> None:
        try:
            self._publish(message)
        except TransportError as e:
            logger.error(f"Failed to publish result for job {message.id}: {e}")

    def _terminate(self, exit_code: int) -> int:
        self.shutdown()
        return exit_code
