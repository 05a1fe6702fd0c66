"""Test fixtures for the web layer."""

import pytest
from fastapi.testclient import TestClient

from app.dependencies import build_service, get_event_log, get_service
from app.main import app
from execution.phase_templates import fallback_substeps
from execution.project_repository import JsonFileProjectRepository
from execution.state_events import StateEventLog


def _two_substeps(phase, goal):
    return fallback_substeps(phase.phase_number)[:2]


@pytest.fixture
def event_log():
    return StateEventLog()


@pytest.fixture
def client(tmp_data_dir, event_log, monkeypatch):
    """Create a TestClient backed by a temp data directory."""
    import config.settings as settings

    monkeypatch.setattr(settings, "SSE_POLL_SECONDS", 0)
    monkeypatch.setattr(settings, "SSE_MAX_IDLE_CYCLES", 1)

    service = build_service(JsonFileProjectRepository(tmp_data_dir), event_log, _two_substeps)
    app.dependency_overrides[get_service] = lambda: service
    app.dependency_overrides[get_event_log] = lambda: event_log
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def created_project(client):
    """Create a project and return its id."""
    response = client.post("/api/projects", json={"goal": "Build a habit tracking app"})
    return response.json()["project"]["id"]
