from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

RESULTS_DIRNAME = "results"


def prepare_workspace(workspace: Path) -> Path:
    """Remove any stale workspace for this job and create a fresh empty one."""
    if workspace.exists():
        logger.info(f"Removing stale workspace {workspace}")
        shutil.rmtree(workspace)
    workspace.mkdir(parents=True)
    return workspace


def stage_sources(source_dir: Path, workspace: Path) -> int:
    """
    Copy every entry of the job's source directory into the workspace,
    except the results directory. Returns the number of staged entries.
    """
    if not source_dir.is_dir():
        return 0

    count = 0
    for entry in source_dir.iterdir():
        if entry.name == RESULTS_DIRNAME:
            continue
        dest = workspace / entry.name
        if entry.is_dir() and not entry.is_symlink():
            shutil.copytree(entry, dest, symlinks=True)
        else:
            shutil.copy2(entry, dest, follow_symlinks=False)
        count += 1

    logger.debug(f"Staged {count} entries from {source_dir} into {workspace}")
    return count


def remove_workspace(workspace: Path) -> None:
    try:
        shutil.rmtree(workspace)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Failed to remove workspace {workspace}: {e}")


@contextmanager
def preserved_cwd() -> Iterator[Path]:
    """Restore the process working directory on every exit path."""
    original = Path.cwd()
    try:
        yield original
    finally:
        if Path.cwd() != original:
            os.chdir(original)
