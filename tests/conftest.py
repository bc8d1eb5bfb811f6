"""Pytest configuration and fixtures."""

import json
from pathlib import Path

import pytest


@pytest.fixture
def jobs_root(tmp_path):
    root = tmp_path / "jobs"
    root.mkdir()
    return root


@pytest.fixture
def workspaces_root(tmp_path):
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def make_job(jobs_root):
    """Create <jobs_root>/<job_id> with optional job.json steps and extra files."""

    def _make(job_id, steps=None, files=None):
        job_dir = jobs_root / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        if steps is not None:
            (job_dir / "job.json").write_text(json.dumps({"steps": steps}))
        for name, content in (files or {}).items():
            path = job_dir / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return job_dir

    return _make


@pytest.fixture
def read_manifest():
    def _read(job_dir: Path) -> dict:
        return json.loads((job_dir / "results" / "result.json").read_text())

    return _read
