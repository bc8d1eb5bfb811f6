from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


def sync_results(workspace: Path, results_dir: Path) -> List[str]:
    """
    Copy workspace entries into results_dir without overwriting anything
    already there. Directories are merged recursively.

    Returns the relative paths that were copied.
    """
    copied: List[str] = []
    _merge(workspace, results_dir, workspace, copied)
    if copied:
        logger.info(f"Synced {len(copied)} artifact(s) to {results_dir}")
    return copied


def _merge(src_dir: Path, dest_dir: Path, root: Path, copied: List[str]) -> None:
    for entry in src_dir.iterdir():
        dest = dest_dir / entry.name
        if entry.is_dir() and not entry.is_symlink():
            if not dest.exists():
                shutil.copytree(entry, dest, symlinks=True)
                copied.append(str(entry.relative_to(root)))
            elif dest.is_dir() and not dest.is_symlink():
                _merge(entry, dest, root, copied)
            continue

        if dest.exists() or dest.is_symlink():
            logger.debug(f"Not overwriting existing result {dest}")
            continue
        shutil.copy2(entry, dest, follow_symlinks=False)
        copied.append(str(entry.relative_to(root)))
