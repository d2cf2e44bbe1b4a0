from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from layoutlens.errors import NotFoundError, WorkspaceIOError
from layoutlens.settings import get_settings

LOGGER = logging.getLogger("layoutlens.artifacts")

CONFIG_FILENAME = "config.json"
MANIFEST_FILENAME = "manifest.json"
IMPORT_PREFIX = "import-"
_MAX_ALLOCATION_ATTEMPTS = 16


@dataclass(frozen=True)
class RunWorkspace:
    run_id: str
    path: Path

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILENAME

    @property
    def imported(self) -> bool:
        return self.run_id.startswith(IMPORT_PREFIX)


def new_run_id(*, imported: bool = False) -> str:
    stamp = f"{int(time.time())}-{secrets.token_hex(3)}"
    return f"{IMPORT_PREFIX}{stamp}" if imported else stamp


class RunStore:
    """Manage the on-disk run workspaces under ``<root>/runs``."""

    def __init__(self, root: Optional[Path] = None, base_url: str = "/artifacts") -> None:
        resolved_root = root or get_settings().artifacts_root
        self._root = Path(resolved_root).expanduser().resolve()
        self._base_url = base_url.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    @property
    def runs_dir(self) -> Path:
        return self._root / "runs"

    def allocate(self, *, imported: bool = False) -> RunWorkspace:
        """Create a fresh workspace; an ID that already exists on disk is never handed out again."""
        try:
            self.runs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceIOError(f"Cannot create run directory root {self.runs_dir}: {exc}") from exc

        for _ in range(_MAX_ALLOCATION_ATTEMPTS):
            run_id = new_run_id(imported=imported)
            path = self.runs_dir / run_id
            try:
                path.mkdir(parents=False, exist_ok=False)
            except FileExistsError:
                continue
            except OSError as exc:
                raise WorkspaceIOError(f"Cannot create workspace {path}: {exc}") from exc
            LOGGER.info("Allocated workspace %s at %s", run_id, path)
            return RunWorkspace(run_id=run_id, path=path)
        raise WorkspaceIOError(f"Could not allocate a unique workspace under {self.runs_dir}")

    def open(self, run_dir: Path | str) -> RunWorkspace:
        path = Path(run_dir).expanduser().resolve()
        if not path.is_dir():
            raise NotFoundError(f"Run directory not found: {path}")
        return RunWorkspace(run_id=path.name, path=path)

    def get(self, run_id: str) -> RunWorkspace:
        if not run_id or "/" in run_id or "\\" in run_id or run_id in {".", ".."}:
            raise NotFoundError(f"Run not found: {run_id!r}")
        return self.open(self.runs_dir / run_id)

    def list_runs(self) -> List[RunWorkspace]:
        if not self.runs_dir.exists():
            return []
        workspaces = [
            RunWorkspace(run_id=child.name, path=child)
            for child in self.runs_dir.iterdir()
            if child.is_dir()
        ]
        return sorted(workspaces, key=lambda ws: ws.path.stat().st_mtime, reverse=True)

    def relative(self, path: Path) -> str:
        cleaned = path.resolve()
        return cleaned.relative_to(self._root).as_posix()

    def url(self, path: Path) -> str:
        return f"{self._base_url}/{self.relative(path)}"


_run_store: Optional[RunStore] = None


def get_run_store() -> RunStore:
    global _run_store
    if _run_store is None:
        _run_store = RunStore()
    return _run_store
