"""Project API routes: lifecycle, progress commands and completion checks.

Endpoints:
    POST   /api/projects                               - Create a project
    GET    /api/projects                               - List projects
    GET    /api/projects/{project_id}                  - Get one project
    PATCH  /api/projects/{project_id}                  - Edit goal or status
    DELETE /api/projects/{project_id}                  - Delete a project
    POST   /api/projects/{project_id}/substeps/complete - Complete a substep
    POST   /api/projects/{project_id}/advance          - Move the cursor
    POST   /api/projects/{project_id}/phases/{phase}/unlock - Unlock a phase
    POST   /api/projects/{project_id}/phases/{phase}/expand - Generate substeps
    POST   /api/projects/{project_id}/completion-check - Run completion detection

Every success response uses the envelope ``{ok, project, changes, message}``.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.dependencies import get_event_log, get_service, run_sync
from app.models.project import (
    AdvanceRequest,
    CompleteSubstepRequest,
    CompletionCheckRequest,
    CreateProjectRequest,
    UpdateProjectRequest,
)
from execution.project_service import ProjectService
from execution.state_events import StateEventLog

router = APIRouter(prefix="/api/projects", tags=["projects"])


def _envelope(project=None, summary=None, message: str = "", status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": True,
            "project": project.to_dict() if project is not None else None,
            "changes": summary.to_dict() if summary is not None else None,
            "message": summary.describe() if summary is not None and not message else message,
        },
    )


@router.post("")
async def create_project(body: CreateProjectRequest, service: ProjectService = Depends(get_service)):
    """Create a project with the P0-P7 roadmap."""
    project = await run_sync(
        service.create_project,
        body.goal,
        user_id=body.user_id,
        expand_first_phase=body.expand_first_phase,
    )
    return _envelope(
        project, message=f"Project created at {project.cursor.label()}", status_code=201
    )


@router.get("")
async def list_projects(user_id: str | None = None, service: ProjectService = Depends(get_service)):
    projects = await run_sync(service.list_projects, user_id)
    return JSONResponse(content={
        "ok": True,
        "projects": [p.to_dict() for p in projects],
        "count": len(projects),
    })


@router.get("/{project_id}")
async def get_project(project_id: str, service: ProjectService = Depends(get_service)):
    project = await run_sync(service.get_project, project_id)
    return _envelope(project, message=f"Current position {project.cursor.label()}")


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    body: UpdateProjectRequest,
    service: ProjectService = Depends(get_service),
):
    """Administrative edit of the goal and/or lifecycle status."""
    project = await run_sync(
        service.update_project, project_id, goal=body.goal, status=body.status
    )
    return _envelope(project, message="Project updated")


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    service: ProjectService = Depends(get_service),
    event_log: StateEventLog = Depends(get_event_log),
):
    await run_sync(service.delete_project, project_id)
    event_log.record_deleted(project_id)
    return _envelope(message=f"Project {project_id} deleted")


@router.post("/{project_id}/substeps/complete")
async def complete_substep(
    project_id: str,
    body: CompleteSubstepRequest,
    service: ProjectService = Depends(get_service),
):
    project, summary = await run_sync(
        service.complete_substep, project_id, body.phase, body.substep
    )
    return _envelope(project, summary)


@router.post("/{project_id}/advance")
async def advance(
    project_id: str,
    body: AdvanceRequest,
    service: ProjectService = Depends(get_service),
):
    project, summary = await run_sync(service.advance, project_id, body.mode)
    return _envelope(project, summary)


@router.post("/{project_id}/phases/{phase}/unlock")
async def unlock_phase(project_id: str, phase: str, service: ProjectService = Depends(get_service)):
    project, summary = await run_sync(service.unlock_phase, project_id, phase)
    return _envelope(project, summary)


@router.post("/{project_id}/phases/{phase}/expand")
async def expand_phase(project_id: str, phase: str, service: ProjectService = Depends(get_service)):
    """Generate substeps for a phase (LLM with template fallback)."""
    project, summary = await run_sync(service.expand_phase, project_id, phase)
    return _envelope(project, summary)


@router.post("/{project_id}/completion-check")
async def completion_check(
    project_id: str,
    body: CompletionCheckRequest,
    service: ProjectService = Depends(get_service),
):
    """Advisory check: does the conversation suggest the current substep is done?"""
    messages = [m.model_dump() for m in body.messages]
    project, assessment = await run_sync(service.check_completion, project_id, messages)
    return JSONResponse(content={
        "ok": True,
        "project": project.to_dict(),
        "assessment": assessment.to_dict(),
        "message": assessment.nudge_message or "",
    })
