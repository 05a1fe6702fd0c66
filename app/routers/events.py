"""Server-sent events: stream state change summaries for one project."""

import asyncio
import json

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

import config.settings as settings
from app.dependencies import get_event_log, get_service, run_sync
from execution.project_service import ProjectService
from execution.state_events import StateEventLog

router = APIRouter(prefix="/api/projects", tags=["events"])


@router.get("/{project_id}/events")
async def project_events(
    project_id: str,
    after: int = 0,
    service: ProjectService = Depends(get_service),
    event_log: StateEventLog = Depends(get_event_log),
):
    """SSE endpoint streaming change summaries newer than ``after``."""
    # 404 before opening the stream
    await run_sync(service.get_project, project_id)

    async def event_stream():
        last_sequence = after
        idle_cycles = 0

        while idle_cycles < settings.SSE_MAX_IDLE_CYCLES:
            events = event_log.get_events(project_id, after=last_sequence)

            if events:
                for event in events:
                    data = json.dumps(event.to_dict())
                    yield f"id: {event.sequence}\ndata: {data}\n\n"
                last_sequence = events[-1].sequence
                idle_cycles = 0

                if events[-1].event_type == "deleted":
                    break
            else:
                idle_cycles += 1

            await asyncio.sleep(settings.SSE_POLL_SECONDS)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
