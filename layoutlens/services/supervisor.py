from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from layoutlens.errors import SpawnError
from layoutlens.schemas import ProcessState
from layoutlens.settings import Settings, get_settings

LOGGER = logging.getLogger("layoutlens.supervisor")

NO_OUTPUT_MESSAGE = "Capture worker exited with status {code} and produced no output"


_TRANSITIONS = {
    ProcessState.not_started: {ProcessState.spawned, ProcessState.spawn_error},
    ProcessState.spawned: {ProcessState.succeeded, ProcessState.failed},
}


@dataclass
class ProcessOutcome:
    state: ProcessState = ProcessState.not_started
    returncode: Optional[int] = None
    output: str = ""
    timed_out: bool = False
    history: List[ProcessState] = field(default_factory=lambda: [ProcessState.not_started])

    @property
    def succeeded(self) -> bool:
        return self.state is ProcessState.succeeded

    @property
    def finished(self) -> bool:
        return self.state not in _TRANSITIONS

    def advance(self, state: ProcessState) -> None:
        if state not in _TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Illegal process transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


def _decode(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def combine_output(stdout: object, stderr: object) -> str:
    """Join captured streams, stderr first."""
    parts = [text.strip() for text in (_decode(stderr), _decode(stdout)) if text.strip()]
    return "\n".join(parts)


def prepend_search_path(current: str, extra_dirs: Sequence[str]) -> str:
    entries = [entry for entry in current.split(os.pathsep) if entry] if current else []
    prefix = [item for item in extra_dirs if item and item not in entries]
    return os.pathsep.join(prefix + entries)


class ProcessSupervisor:
    """Spawn worker processes with a per-invocation environment overlay."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def timeout(self) -> int:
        return self._settings.worker_timeout_seconds

    def effective_environment(
        self,
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        env = dict(os.environ if base is None else base)
        env["PATH"] = prepend_search_path(env.get("PATH", ""), self._settings.extra_path_dirs)
        if overrides:
            env.update({str(key): str(value) for key, value in overrides.items()})
        return env

    def working_directory(self) -> Path:
        resource_dir = self._settings.resource_dir
        if resource_dir is not None and Path(resource_dir).is_dir():
            return Path(resource_dir)
        return Path.cwd()

    def run(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env_overrides: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> ProcessOutcome:
        command: List[str] = [executable, *[str(arg) for arg in args]]
        workdir = cwd or self.working_directory()
        outcome = ProcessOutcome()
        LOGGER.debug("Spawning %s (cwd=%s)", " ".join(command), workdir)
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=str(workdir),
                env=self.effective_environment(env_overrides),
            )
        except OSError as exc:
            LOGGER.error("Failed to spawn %s: %s", executable, exc)
            outcome.advance(ProcessState.spawn_error)
            outcome.output = f"Failed to start {executable}: {exc}"
            return outcome
        outcome.advance(ProcessState.spawned)

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            stdout, stderr = proc.communicate()
            captured = combine_output(stdout, stderr)
            message = f"Capture worker timed out after {self.timeout} seconds and was terminated"
            LOGGER.error("%s: %s", message, executable)
            outcome.advance(ProcessState.failed)
            outcome.returncode = proc.returncode
            outcome.output = f"{message}\n{captured}" if captured else message
            outcome.timed_out = True
            return outcome

        outcome.returncode = proc.returncode
        if proc.returncode == 0:
            LOGGER.info("Process %s exited successfully", executable)
            outcome.advance(ProcessState.succeeded)
            outcome.output = combine_output(stdout, stderr)
            return outcome

        outcome.advance(ProcessState.failed)
        outcome.output = combine_output(stdout, stderr) or NO_OUTPUT_MESSAGE.format(code=proc.returncode)
        LOGGER.error("Process %s exited with status %s", executable, proc.returncode)
        LOGGER.debug("Captured output:\n%s", outcome.output)
        return outcome

    def spawn_detached(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env_overrides: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> int:
        """Start a long-running child without waiting on it; its output is discarded."""
        command = [executable, *[str(arg) for arg in args]]
        workdir = cwd or self.working_directory()
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                cwd=str(workdir),
                env=self.effective_environment(env_overrides),
                start_new_session=True,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start {executable}: {exc}") from exc
        LOGGER.info("Started detached process %s (pid=%s)", " ".join(command), proc.pid)
        return proc.pid
