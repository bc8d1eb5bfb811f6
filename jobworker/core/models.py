from __future__ import annotations
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from jobworker.errors import PayloadError


class StepStatus:
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunStatus:
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class JobDescriptor:
    id: str
    source_root: Optional[str] = None   # overrides the worker's jobs dir for this job
    steps: Optional[List[str]] = None   # bypasses job.json when set
    work_dir: Optional[str] = None      # the job directory itself, used as-is

    @property
    def override_config(self) -> Optional[Dict[str, Any]]:
        if self.steps is None:
            return None
        return {"steps": list(self.steps)}

    def job_dir(self, default_root: str | Path) -> Path:
        """Directory holding the job's sources and its results/ folder."""
        if self.work_dir:
            return Path(self.work_dir)
        return Path(self.source_root or default_root) / self.id

    @classmethod
    def from_body(cls, body: str) -> "JobDescriptor":
        """
        Parse and validate a queue message body.

        Raises:
            PayloadError: body is not a JSON object, or id/steps are invalid
        """
        try:
            data = json.loads(body) if body else None
        except (json.JSONDecodeError, ValueError) as e:
            raise PayloadError(f"Message body is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise PayloadError("Message body must be a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobDescriptor":
        """Validate an already-decoded payload object."""
        job_id = data.get("id")
        if not isinstance(job_id, str) or not job_id.strip():
            raise PayloadError("Message is missing a non-empty 'id'")
        if "/" in job_id or job_id in (".", ".."):
            raise PayloadError(f"Invalid job id: {job_id!r}")

        source_root = data.get("sourceRoot")
        if source_root is not None and not isinstance(source_root, str):
            raise PayloadError("'sourceRoot' must be a string")

        # older producers send the job directory itself as `workDir`
        work_dir = data.get("workDir")
        if work_dir is not None and not isinstance(work_dir, str):
            raise PayloadError("'workDir' must be a string")

        steps = data.get("steps")
        if steps is not None:
            if not isinstance(steps, list) or not all(isinstance(s, str) for s in steps):
                raise PayloadError("'steps' must be a list of strings")

        return cls(id=job_id, source_root=source_root or None, steps=steps, work_dir=work_dir or None)


@dataclass
class StepResult:
    index: int
    command: str
    status: str = StepStatus.PENDING
    exit_code: Optional[int] = None
    duration_ms: int = 0
    log: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "command": self.command,
            "status": self.status,
            "exitCode": self.exit_code,
            "durationMs": self.duration_ms,
            "log": self.log,
        }


@dataclass
class Timing:
    start: str
    end: Optional[str] = None
    duration_ms: int = 0


@dataclass
class RunManifest:
    """Durable record of one job attempt, written to results/result.json."""
    job_id: str
    timing: Timing
    status: str = RunStatus.RUNNING
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "jobId": self.job_id,
            "status": self.status,
            "timing": {
                "start": self.timing.start,
                "end": self.timing.end,
                "durationMs": self.timing.duration_ms,
            },
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ExecutionResult:
    status: str
    exit_code: int
    manifest: RunManifest
    failure: Optional[BaseException] = None   # classified cause when status is failed


@dataclass(frozen=True)
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: str
    retained: bool = False     # stale last-known message re-announced on subscription
    receive_count: int = 1


@dataclass(frozen=True)
class ResultMessage:
    id: str
    status: str
    exit_code: int
    manifest_file: str
    log_dir: str
    error: Optional[str] = None

    def to_json(self) -> str:
        data: Dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "exitCode": self.exit_code,
            "manifestFile": self.manifest_file,
            "logDir": self.log_dir,
        }
        if self.error is not None:
            data["error"] = self.error
        return json.dumps(data)
