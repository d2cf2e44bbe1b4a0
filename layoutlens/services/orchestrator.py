from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from layoutlens.errors import LayoutLensError, SpawnError, WorkerFailure
from layoutlens.schemas import JobRequest, ProcessState, RunManifest
from layoutlens.services import archive
from layoutlens.services.artifacts import RunStore, RunWorkspace, get_run_store
from layoutlens.services.gallery import SHOTS_FAILED, SHOTS_LOADED, GalleryNotifier, get_notifier
from layoutlens.services.interchange import InterchangeLauncher
from layoutlens.services.job_config import build_job_config, serialize
from layoutlens.services.manifest import read_manifest
from layoutlens.services.resolver import (
    RUNNER_SCRIPT,
    RUNNER_SCRIPT_NAME,
    WorkerExecutableResolver,
    materialize_script,
)
from layoutlens.services.supervisor import ProcessSupervisor
from layoutlens.settings import Settings, get_settings

LOGGER = logging.getLogger("layoutlens.orchestrator")


class RunOrchestrator:
    """Drive capture jobs through the worker and move workspaces in and out of archives."""

    def __init__(
        self,
        store: Optional[RunStore] = None,
        settings: Optional[Settings] = None,
        *,
        notifier: Optional[GalleryNotifier] = None,
        resolver: Optional[WorkerExecutableResolver] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        interchange: Optional[InterchangeLauncher] = None,
        capture_script: str = RUNNER_SCRIPT,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store or get_run_store()
        self._notifier = notifier or get_notifier()
        self._resolver = resolver or WorkerExecutableResolver(self._settings)
        self._supervisor = supervisor or ProcessSupervisor(self._settings)
        self._interchange = interchange or InterchangeLauncher(
            self._settings,
            resolver=self._resolver,
            supervisor=self._supervisor,
        )
        self._capture_script = capture_script

    @property
    def store(self) -> RunStore:
        return self._store

    # ------------------------------------------------------------------ capture
    def run_screenshot_job(self, request: JobRequest) -> RunWorkspace:
        workspace = self._store.allocate()
        config = build_job_config(request, workspace)
        config_path = serialize(config, workspace.path)
        script_path = materialize_script(RUNNER_SCRIPT_NAME, self._capture_script, workspace.path)
        runtime = self._resolver.resolve()

        LOGGER.info(
            "Starting capture run %s for %s (breakpoints=%s locales=%s)",
            workspace.run_id,
            request.url,
            request.breakpoints,
            request.locales,
        )
        outcome = self._supervisor.run(
            runtime,
            [str(script_path), str(config_path)],
            env_overrides={"LAYOUTLENS_RUN_ID": workspace.run_id},
        )

        if outcome.state is ProcessState.spawn_error:
            error: LayoutLensError = SpawnError(outcome.output)
            self._reveal_failure(workspace, error)
            raise error
        if outcome.state is not ProcessState.succeeded:
            error = WorkerFailure(outcome.output, output=outcome.output, returncode=outcome.returncode)
            self._reveal_failure(workspace, error)
            raise error

        try:
            manifest = read_manifest(workspace)
        except LayoutLensError as exc:
            self._reveal_failure(workspace, exc)
            raise
        self._publish_manifest(workspace, manifest)
        LOGGER.info("Capture run %s finished with %s shots", workspace.run_id, len(manifest.shots))
        return workspace

    def _publish_manifest(self, workspace: RunWorkspace, manifest: RunManifest) -> None:
        payload: Dict[str, object] = manifest.rebased(workspace.path).to_payload()
        payload.setdefault("run_id", workspace.run_id)
        if not self._notifier.publish(SHOTS_LOADED, payload):
            LOGGER.warning("Gallery notification for %s was not fully delivered", workspace.run_id)

    def _reveal_failure(self, workspace: RunWorkspace, error: LayoutLensError) -> None:
        self._notifier.publish(
            SHOTS_FAILED,
            {
                "run_id": workspace.run_id,
                "workspace": str(workspace.path),
                "code": error.code,
                "message": error.message,
            },
        )

    # ------------------------------------------------------------------ gallery
    def open_gallery_from_dir(self, run_dir: Path | str) -> RunManifest:
        workspace = self._store.open(run_dir)
        manifest = read_manifest(workspace).rebased(workspace.path)
        self._publish_manifest(workspace, manifest)
        return manifest

    def open_gallery_from_zip(self, src_zip: Path | str) -> RunWorkspace:
        workspace = self.import_gallery(src_zip)
        manifest = read_manifest(workspace)
        self._publish_manifest(workspace, manifest)
        return workspace

    # ------------------------------------------------------------------ interchange
    def export_gallery(self, run_dir: Path | str, dest_zip: Path | str) -> Path:
        workspace = self._store.open(run_dir)
        destination = Path(dest_zip).expanduser()
        archive.pack(workspace.path, destination)
        return destination

    def import_gallery(self, src_zip: Path | str) -> RunWorkspace:
        return archive.unpack(Path(src_zip).expanduser(), self._store)

    def open_figma_importer(self, run_dir: Path | str, port: Optional[int] = None) -> str:
        workspace = self._store.open(run_dir)
        return self._interchange.launch(workspace, port)


_orchestrator: Optional[RunOrchestrator] = None


def get_orchestrator() -> RunOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RunOrchestrator()
    return _orchestrator
