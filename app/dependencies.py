"""Shared dependencies for the FastAPI web layer.

One repository, state machine, event log and service are built per process
and handed to routes through ``Depends``. Tests swap them with
``app.dependency_overrides``.
"""

import asyncio
import functools

from config.settings import DATA_DIR
from execution.progress_state_machine import ProgressStateMachine, ProjectLocks
from execution.project_repository import JsonFileProjectRepository
from execution.project_service import ProjectService
from execution.state_events import StateEventLog


def build_service(repository, event_log: StateEventLog, substep_generator=None) -> ProjectService:
    """Wire a service whose state machine feeds ``event_log``."""
    machine = ProgressStateMachine(repository, ProjectLocks())
    machine.on_state_change(event_log.record)
    return ProjectService(repository, machine, substep_generator=substep_generator)


_event_log = StateEventLog()
_service = build_service(JsonFileProjectRepository(DATA_DIR), _event_log)


def get_service() -> ProjectService:
    return _service


def get_event_log() -> StateEventLog:
    return _event_log


async def run_sync(func, *args, **kwargs):
    """Run a blocking core call in the default executor."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
