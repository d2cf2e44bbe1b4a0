from __future__ import annotations

import logging
from typing import Optional

from layoutlens.services.artifacts import RunWorkspace
from layoutlens.services.resolver import SERVE_SCRIPT, SERVE_SCRIPT_NAME, WorkerExecutableResolver, materialize_script
from layoutlens.services.supervisor import ProcessSupervisor
from layoutlens.settings import Settings, get_settings

LOGGER = logging.getLogger("layoutlens.interchange")


class InterchangeLauncher:
    """Expose a workspace over local HTTP for the Figma importer plugin."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        resolver: Optional[WorkerExecutableResolver] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        serve_script: str = SERVE_SCRIPT,
    ) -> None:
        self._settings = settings or get_settings()
        self._resolver = resolver or WorkerExecutableResolver(self._settings)
        self._supervisor = supervisor or ProcessSupervisor(self._settings)
        self._serve_script = serve_script

    def launch(self, workspace: RunWorkspace, port: Optional[int] = None) -> str:
        bind_port = port or self._settings.interchange_port
        script_path = materialize_script(SERVE_SCRIPT_NAME, self._serve_script, workspace.path)
        runtime = self._resolver.resolve()
        # The server outlives this call and is never waited on.
        pid = self._supervisor.spawn_detached(
            runtime,
            [str(script_path), str(workspace.path), str(bind_port)],
        )
        base_url = f"http://localhost:{bind_port}"
        LOGGER.info("Interchange server for %s started (pid=%s) at %s", workspace.run_id, pid, base_url)
        return base_url
