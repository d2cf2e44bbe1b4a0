from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from layoutlens.schemas import (
    ExportRequest,
    FigmaImporterRequest,
    FigmaImporterResponse,
    GalleryEvent,
    ImportRequest,
    JobRequest,
    OpenGalleryRequest,
    RunInfo,
)
from layoutlens.services.artifacts import RunWorkspace
from layoutlens.services.gallery import GalleryNotifier, get_notifier
from layoutlens.services.orchestrator import RunOrchestrator, get_orchestrator

router = APIRouter(prefix="/api", tags=["api"])

OrchestratorDep = Depends(get_orchestrator)
NotifierDep = Depends(get_notifier)


def _run_info(workspace: RunWorkspace) -> RunInfo:
    return RunInfo(
        run_id=workspace.run_id,
        workspace=str(workspace.path),
        imported=workspace.imported,
        has_manifest=workspace.manifest_path.is_file(),
    )


# Capture -------------------------------------------------------------------------
@router.post("/jobs", response_model=RunInfo, status_code=201)
async def run_screenshot_job(
    payload: JobRequest, orchestrator: RunOrchestrator = OrchestratorDep
) -> RunInfo:
    workspace = await run_in_threadpool(orchestrator.run_screenshot_job, payload)
    return _run_info(workspace)


@router.get("/runs", response_model=List[RunInfo])
async def list_runs(orchestrator: RunOrchestrator = OrchestratorDep) -> List[RunInfo]:
    return [_run_info(workspace) for workspace in orchestrator.store.list_runs()]


# Archives ------------------------------------------------------------------------
@router.post("/runs/export")
async def export_gallery(
    payload: ExportRequest, orchestrator: RunOrchestrator = OrchestratorDep
) -> Dict[str, str]:
    destination = await run_in_threadpool(orchestrator.export_gallery, payload.run_dir, payload.dest_zip)
    return {"status": "ok", "archive": str(destination)}


@router.post("/runs/import", response_model=RunInfo, status_code=201)
async def import_gallery(
    payload: ImportRequest, orchestrator: RunOrchestrator = OrchestratorDep
) -> RunInfo:
    workspace = await run_in_threadpool(orchestrator.import_gallery, payload.src_zip)
    return _run_info(workspace)


# Gallery -------------------------------------------------------------------------
@router.post("/gallery/open")
async def open_gallery_from_dir(
    payload: OpenGalleryRequest, orchestrator: RunOrchestrator = OrchestratorDep
) -> Dict[str, str]:
    await run_in_threadpool(orchestrator.open_gallery_from_dir, payload.run_dir)
    return {"status": "ok"}


@router.post("/gallery/open-zip", response_model=RunInfo, status_code=201)
async def open_gallery_from_zip(
    payload: ImportRequest, orchestrator: RunOrchestrator = OrchestratorDep
) -> RunInfo:
    workspace = await run_in_threadpool(orchestrator.open_gallery_from_zip, payload.src_zip)
    return _run_info(workspace)


@router.get("/gallery/events", response_model=List[GalleryEvent])
async def gallery_events(notifier: GalleryNotifier = NotifierDep) -> List[Dict[str, object]]:
    return notifier.history()


# Figma ---------------------------------------------------------------------------
@router.post("/figma/importer", response_model=FigmaImporterResponse)
async def open_figma_importer(
    payload: FigmaImporterRequest, orchestrator: RunOrchestrator = OrchestratorDep
) -> FigmaImporterResponse:
    base_url = await run_in_threadpool(orchestrator.open_figma_importer, payload.run_dir, payload.port)
    return FigmaImporterResponse(base_url=base_url)
