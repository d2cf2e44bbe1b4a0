from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from layoutlens.services.artifacts import get_run_store

router = APIRouter(tags=["artifacts"])


@router.get("/artifacts/{artifact_path:path}")
async def read_artifact(artifact_path: str) -> FileResponse:
    store = get_run_store()
    root = store.root.resolve()
    target = (root / artifact_path).resolve()

    if not target.is_relative_to(root):
        raise HTTPException(status_code=404, detail="Artifact not found")
    if not target.exists() or not target.is_file():
        raise HTTPException(status_code=404, detail="Artifact not found")

    return FileResponse(path=target)
