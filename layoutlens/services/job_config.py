from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from layoutlens.errors import NotFoundError, ParseError, WorkspaceIOError
from layoutlens.schemas import JobConfig, JobRequest
from layoutlens.services.artifacts import CONFIG_FILENAME, RunWorkspace

LOGGER = logging.getLogger("layoutlens.job_config")


def build_job_config(request: JobRequest, workspace: RunWorkspace) -> JobConfig:
    payload = request.model_dump(by_alias=True)
    payload["outDir"] = str(workspace.path.resolve())
    return JobConfig.model_validate(payload)


def serialize(config: JobConfig, out_dir: Path) -> Path:
    """Write the worker contract to ``out_dir/config.json`` and return its path."""
    config_path = Path(out_dir) / CONFIG_FILENAME
    text = json.dumps(config.to_contract(), indent=2, ensure_ascii=False)
    try:
        config_path.write_text(text + "\n", encoding="utf-8")
    except OSError as exc:
        raise WorkspaceIOError(f"Failed to write {config_path}: {exc}") from exc
    LOGGER.debug("Wrote job config %s", config_path)
    return config_path


def load_job_config(config_path: Path) -> JobConfig:
    config_path = Path(config_path)
    if not config_path.is_file():
        raise NotFoundError(f"Job config not found: {config_path}")
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WorkspaceIOError(f"Failed to read {config_path}: {exc}") from exc
    try:
        return JobConfig.model_validate_json(text)
    except ValidationError as exc:
        raise ParseError(f"Invalid job config {config_path}: {exc}") from exc
