from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Iterator, Optional, Tuple

from layoutlens.errors import WorkspaceIOError
from layoutlens.settings import Settings, get_settings
from layoutlens.services.supervisor import prepend_search_path

LOGGER = logging.getLogger("layoutlens.resolver")

_SCRIPTS_DIR = Path(__file__).resolve().parent
RUNNER_SCRIPT_NAME = "runner.py"
SERVE_SCRIPT_NAME = "serve_run.py"


def _read_embedded(filename: str) -> str:
    path = _SCRIPTS_DIR / filename
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:  # pragma: no cover - import-time guard
        raise RuntimeError(f"Embedded script missing: {path}") from exc


RUNNER_SCRIPT = _read_embedded("runner_script.py")
SERVE_SCRIPT = _read_embedded("serve_script.py")


def is_bare_command(value: str) -> bool:
    return os.sep not in value and (os.altsep is None or os.altsep not in value)


class WorkerExecutableResolver:
    """Pick the runtime that executes the materialized worker scripts."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def candidates(self) -> Iterator[Tuple[str, str]]:
        if self._settings.worker_runtime:
            yield "env", self._settings.worker_runtime
        yield "path", self._settings.worker_command
        for location in self._settings.well_known_runtimes:
            yield "well_known", location

    def _search_path(self) -> str:
        return prepend_search_path(os.environ.get("PATH", ""), self._settings.extra_path_dirs)

    def resolve(self) -> str:
        search_path = self._search_path()
        for source, candidate in self.candidates():
            if source == "env":
                if is_bare_command(candidate) or Path(candidate).exists():
                    LOGGER.info("Using worker runtime from LAYOUTLENS_WORKER_RUNTIME: %s", candidate)
                    return candidate
                LOGGER.warning("LAYOUTLENS_WORKER_RUNTIME points at missing path %s; ignoring", candidate)
                continue
            if source == "path":
                if shutil.which(candidate, path=search_path):
                    LOGGER.debug("Worker runtime %s found on search path", candidate)
                    return candidate
                continue
            if Path(candidate).exists():
                LOGGER.info("Using well-known worker runtime %s", candidate)
                return candidate
        fallback = self._settings.worker_command
        LOGGER.warning("No worker runtime found; falling back to bare command %s", fallback)
        return fallback


def materialize_script(name: str, source: str, out_dir: Path) -> Path:
    """Write an embedded script into the workspace, replacing any stale copy."""
    target = Path(out_dir) / name
    try:
        target.write_text(source, encoding="utf-8")
    except OSError as exc:
        raise WorkspaceIOError(f"Failed to materialize {name} into {out_dir}: {exc}") from exc
    return target
