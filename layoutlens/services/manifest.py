from __future__ import annotations

import logging

from pydantic import ValidationError

from layoutlens.errors import NotFoundError, ParseError, WorkspaceIOError
from layoutlens.schemas import RunManifest
from layoutlens.services.artifacts import RunWorkspace

LOGGER = logging.getLogger("layoutlens.manifest")


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
        problems.append(f"{location}: {error.get('msg')}")
    return "; ".join(problems)


def read_manifest(workspace: RunWorkspace) -> RunManifest:
    """Load and validate the worker's ``manifest.json``; the file is untrusted input."""
    manifest_path = workspace.manifest_path
    if not manifest_path.is_file():
        raise NotFoundError(f"Manifest not found in {workspace.path}")
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(f"Manifest {manifest_path} is not UTF-8 text: {exc}") from exc
    except OSError as exc:
        raise WorkspaceIOError(f"Failed to read {manifest_path}: {exc}") from exc
    try:
        manifest = RunManifest.model_validate_json(text)
    except ValidationError as exc:
        raise ParseError(f"Invalid manifest {manifest_path}: {_describe(exc)}") from exc
    LOGGER.debug("Loaded manifest %s with %s shots", manifest.id, len(manifest.shots))
    return manifest
