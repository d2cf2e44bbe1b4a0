import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from layoutlens.errors import (
    LayoutLensError,
    NotFoundError,
    ParseError,
    SpawnError,
    WorkerFailure,
    WorkspaceIOError,
)
from layoutlens.routes import api
from layoutlens.routes import artifacts

LOGGER = logging.getLogger("layoutlens")

ERROR_STATUS = {
    NotFoundError: 404,
    ParseError: 422,
    WorkerFailure: 502,
    SpawnError: 502,
    WorkspaceIOError: 500,
}

app = FastAPI(title="LayoutLens Run Orchestrator")
app.include_router(api.router)
app.include_router(artifacts.router)


@app.exception_handler(LayoutLensError)
async def layoutlens_error_handler(_: Request, exc: LayoutLensError) -> JSONResponse:
    status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    if status >= 500:
        LOGGER.error("%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=status,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


@app.get("/")
async def root() -> RedirectResponse:
    """Send visitors to the run listing."""
    return RedirectResponse(url="/api/runs", status_code=303)
