from __future__ import annotations

from typing import Optional


class LayoutLensError(Exception):
    """Base class for failures surfaced by the run orchestration engine."""

    code = "layoutlens_error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        text = (message or "").strip() or self.code
        super().__init__(text)
        self.message = text
        if code:
            self.code = code


class WorkspaceIOError(LayoutLensError):
    """Directory or file creation, read, write, permission or disk failure."""

    code = "io_error"


class SpawnError(LayoutLensError):
    """The worker executable could not be started."""

    code = "spawn_error"


class WorkerFailure(LayoutLensError):
    """The worker exited unsuccessfully; ``output`` holds its diagnostics verbatim."""

    code = "worker_failure"

    def __init__(self, message: str, *, output: str = "", returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class ParseError(LayoutLensError):
    code = "parse_error"


class NotFoundError(LayoutLensError):
    code = "not_found"
