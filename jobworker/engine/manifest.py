from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from jobworker.core.models import RunManifest, RunStatus, StepResult, Timing

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "result.json"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ManifestRecorder:
    """Accumulates step results for one attempt and persists result.json once."""

    def __init__(self, job_id: str):
        self._started = _utc_now()
        self.manifest = RunManifest(job_id=job_id, timing=Timing(start=self._started.isoformat()))
        self._persisted = False

    def add_step(self, index: int, command: str) -> StepResult:
        step = StepResult(index=index, command=command)
        self.manifest.steps.append(step)
        return step

    def finish(self, status: str, error: Optional[str] = None) -> None:
        self.manifest.status = status
        if error is not None:
            self.manifest.error = error

    def fail(self, error: str) -> None:
        self.finish(RunStatus.FAILED, error)

    def stamp_end(self) -> None:
        end = _utc_now()
        self.manifest.timing.end = end.isoformat()
        self.manifest.timing.duration_ms = int((end - self._started).total_seconds() * 1000)

    def persist(self, results_dir: Optional[Path]) -> Optional[Path]:
        """
        Write result.json into results_dir. Failures are logged, never raised.
        Returns the written path, or None.
        """
        if self._persisted:
            logger.warning(f"Manifest for job {self.manifest.job_id} already persisted, skipping")
            return None
        if results_dir is None:
            logger.error(f"No results location for job {self.manifest.job_id}, manifest not written")
            return None

        path = results_dir / MANIFEST_FILENAME
        try:
            results_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(self.manifest.to_dict(), indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}", exc_info=True)
            return None

        self._persisted = True
        return path
