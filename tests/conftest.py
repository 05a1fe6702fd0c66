"""Shared test fixtures for the Zero-to-One Roadmap test suite."""

import uuid

import pytest

from execution.progress_state_machine import ProgressStateMachine
from execution.project_repository import InMemoryProjectRepository
from execution.roadmap import Cursor, Phase, Project, Substep


@pytest.fixture(autouse=True)
def set_test_environment(monkeypatch):
    """Ensure all tests run with ENVIRONMENT=test and never reach the LLM."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setattr("execution.llm_client.OPENAI_API_KEY", "")


@pytest.fixture
def tmp_data_dir(monkeypatch, tmp_path):
    """Redirect DATA_DIR to a temporary directory for test isolation."""
    import config.settings as settings
    import execution.project_repository as repo

    monkeypatch.setattr(settings, "DATA_DIR", tmp_path)
    # Also patch it in modules that import DATA_DIR at module level
    monkeypatch.setattr(repo, "DATA_DIR", tmp_path)
    return tmp_path


def _make_substeps(count: int, completed=()) -> list[Substep]:
    """Build ``count`` substeps numbered from 1; numbers in ``completed`` are done."""
    substeps = []
    for number in range(1, count + 1):
        substep = Substep(
            id=str(uuid.uuid4()),
            number=number,
            title=f"Substep {number}",
            acceptance_criteria=[f"Deliverable {number} uploaded"],
        )
        if number in completed:
            substep.complete()
        substeps.append(substep)
    return substeps


def _make_phase(number: int, substep_count: int = 0, locked: bool = True, completed=()) -> Phase:
    """Build a phase; expanded when it has substeps."""
    phase = Phase(
        id=str(uuid.uuid4()),
        phase_number=number,
        title=f"Phase {number}",
        goal=f"Goal of phase {number}",
        acceptance_criteria=[f"Phase {number} done"],
        locked=locked,
    )
    if substep_count:
        phase.expand(_make_substeps(substep_count, completed))
    return phase


def _make_project(phases: list[Phase], cursor: Cursor | None = None, **kwargs) -> Project:
    project = Project.create("Build a habit tracking app", phases, **kwargs)
    if cursor is not None:
        project.cursor = cursor
    return project


@pytest.fixture
def repository():
    return InMemoryProjectRepository()


@pytest.fixture
def machine(repository):
    return ProgressStateMachine(repository)


@pytest.fixture
def store(repository):
    """Persist a project in the in-memory repository and return its id."""
    def _store(project: Project) -> str:
        repository.save(project.id, project)
        return project.id
    return _store


@pytest.fixture
def two_phase_project():
    """P0 (2 substeps, unlocked) followed by P1 (2 substeps, locked), cursor at P0.1."""
    return _make_project([
        _make_phase(0, 2, locked=False),
        _make_phase(1, 2, locked=True),
    ])


@pytest.fixture
def sample_state(two_phase_project):
    """Return a serialized, schema-valid project snapshot."""
    return two_phase_project.to_dict()


@pytest.fixture
def make_phase():
    return _make_phase


@pytest.fixture
def make_substeps():
    return _make_substeps


@pytest.fixture
def make_project():
    return _make_project
