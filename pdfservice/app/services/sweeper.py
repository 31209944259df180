"""
Startup cleanup of orphaned workspaces.

Workspaces are removed when their request finishes, but a process that
crashes mid-compile leaves its directories behind. This sweep runs once
from the application lifespan, before traffic is accepted.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path

logger = logging.getLogger("pdfservice.sweeper")


def sweep_temporary_root(
    root: Path,
    *,
    purge_all: bool = True,
    max_age_seconds: float = 300,
) -> int:
    """
    Remove entries under ``root``; returns how many were removed.

    With ``purge_all`` false, only entries whose mtime is older than
    ``max_age_seconds`` are removed. Failures on individual entries are
    logged and skipped.
    """
    root = Path(root)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            "tmp_root_unavailable",
            extra={"path": str(root), "error": str(exc)},
        )
        return 0

    removed = 0
    now = time.time()

    try:
        entries = list(root.iterdir())
    except OSError as exc:
        logger.warning(
            "tmp_root_unreadable",
            extra={"path": str(root), "error": str(exc)},
        )
        return 0

    for entry in entries:
        try:
            mtime = entry.lstat().st_mtime
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning(
                "tmp_entry_stat_failed",
                extra={"path": str(entry), "error": str(exc)},
            )
            continue

        if not purge_all and now - mtime < max_age_seconds:
            continue

        try:
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning(
                "tmp_entry_remove_failed",
                extra={"path": str(entry), "error": str(exc)},
            )

    if removed:
        logger.info(
            "tmp_sweep_complete",
            extra={"path": str(root), "removed": removed, "purge_all": purge_all},
        )
    return removed
