"""
Per-request compile workspaces.

Each compile attempt owns one freshly created directory under the
configured temporary root. The directory name carries a random token
from ``secrets`` so paths are unguessable and never collide between
concurrent requests. ``WorkspaceManager.workspace`` is the only way the
pipeline obtains a workspace; it releases the directory exactly once
regardless of how the block exits.
"""

from __future__ import annotations

import logging
import secrets
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Set

logger = logging.getLogger("pdfservice.workspace")

WORKSPACE_PREFIX = "ws-"


@dataclass(frozen=True)
class Workspace:
    id: str
    path: Path
    owner: str

    def file(self, name: str) -> Path:
        return self.path / name


class WorkspaceManager:
    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()
        self._live: Set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, owner: str) -> Workspace:
        self.root.mkdir(parents=True, exist_ok=True)

        while True:
            token = secrets.token_hex(16)
            with self._lock:
                if token in self._live:
                    continue
                path = self.root / f"{WORKSPACE_PREFIX}{token}"
                # exist_ok=False: a leftover directory with the same name is never reused
                try:
                    path.mkdir(mode=0o700)
                except FileExistsError:
                    continue
                self._live.add(token)
                break

        workspace = Workspace(id=token, path=path, owner=owner)
        logger.debug(
            "workspace_acquired",
            extra={"workspace_id": token, "owner": owner},
        )
        return workspace

    def release(self, workspace: Workspace) -> None:
        try:
            shutil.rmtree(workspace.path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception(
                "workspace_release_failed",
                extra={"workspace_id": workspace.id, "path": str(workspace.path)},
            )
        finally:
            with self._lock:
                self._live.discard(workspace.id)

        logger.debug(
            "workspace_released",
            extra={"workspace_id": workspace.id, "owner": workspace.owner},
        )

    @contextmanager
    def workspace(self, owner: str) -> Iterator[Workspace]:
        workspace = self.acquire(owner)
        try:
            yield workspace
        finally:
            self.release(workspace)

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    @staticmethod
    def listing(workspace: Workspace) -> List[str]:
        """Relative paths of every file in the workspace, sorted."""
        try:
            return sorted(
                str(entry.relative_to(workspace.path))
                for entry in workspace.path.rglob("*")
                if entry.is_file()
            )
        except OSError:
            return []
