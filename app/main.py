"""FastAPI application for the Zero-to-One Roadmap backend."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.routers import events, projects
from config.settings import LOG_LEVEL
from execution.errors import (
    AlreadyCompletedError,
    ConcurrentUpdateError,
    InvalidProjectStateError,
    PhaseAlreadyExpandedError,
    PhaseIncompleteError,
    PhaseLockedError,
    ProjectClosedError,
    ProjectNotFoundError,
    RoadmapError,
    TargetNotFoundError,
    ValidationError,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: 400,
    AlreadyCompletedError: 400,
    PhaseLockedError: 400,
    PhaseAlreadyExpandedError: 400,
    ProjectClosedError: 400,
    PhaseIncompleteError: 400,
    ProjectNotFoundError: 404,
    TargetNotFoundError: 404,
    ConcurrentUpdateError: 409,
    InvalidProjectStateError: 500,
}

app = FastAPI(title="Zero-to-One Roadmap")

app.include_router(projects.router)
app.include_router(events.router)


def status_code_for(exc: RoadmapError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(RoadmapError)
async def roadmap_error_handler(request: Request, exc: RoadmapError):
    """Translate typed core errors into JSON error responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": exc.to_dict()},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
