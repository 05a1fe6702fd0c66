"""Persistence for project snapshots.

The state machine depends only on the ProjectRepository interface. Two
implementations ship: a JSON-file store (one state file per project, atomic
writes, schema-validated) and an in-memory store for tests and local runs.

Both stores bump ``Project.version`` on every save and, when the caller
passes ``expected_version``, refuse the write if the stored version moved
since the snapshot was loaded.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from config.settings import DATA_DIR
from execution.errors import (
    ConcurrentUpdateError,
    InvalidProjectStateError,
    ProjectNotFoundError,
    ValidationError,
)
from execution.roadmap import Project
from execution.schema_validator import get_state_validation_errors

logger = logging.getLogger(__name__)

STATE_FILENAME = "project_state.json"


def _check_project_id(project_id: str) -> None:
    if not project_id or ".." in project_id or "/" in project_id or "\\" in project_id:
        raise ValidationError(f"Invalid project id: {project_id!r}", "project_id")


def _check_version(project_id: str, stored: int | None, expected: int | None) -> None:
    if expected is not None and stored != expected:
        raise ConcurrentUpdateError(
            f"Project {project_id} was modified concurrently "
            f"(expected version {expected}, found {stored})"
        )


class ProjectRepository(ABC):
    """Load/save boundary for project snapshots."""

    @abstractmethod
    def load(self, project_id: str) -> Project:
        """Return a fresh copy of the stored project.

        Raises:
            ProjectNotFoundError: If no project is stored under the id.
        """

    @abstractmethod
    def save(self, project_id: str, project: Project, expected_version: int | None = None) -> None:
        """Persist a snapshot and stamp its new version on ``project``.

        Raises:
            ConcurrentUpdateError: If ``expected_version`` does not match.
            InvalidProjectStateError: If the snapshot fails schema validation.
        """

    @abstractmethod
    def exists(self, project_id: str) -> bool:
        ...

    @abstractmethod
    def delete(self, project_id: str) -> bool:
        """Delete a project. Returns False if it did not exist."""

    @abstractmethod
    def list_projects(self, user_id: str | None = None) -> list[Project]:
        ...


def _serialize(project: Project) -> dict:
    data = project.to_dict()
    errors = get_state_validation_errors(data)
    if errors:
        logger.error("Refusing to persist project %s: %s", project.id, errors)
        raise InvalidProjectStateError(errors)
    return data


class JsonFileProjectRepository(ProjectRepository):
    """Stores each project as ``<data_dir>/<project_id>/project_state.json``."""

    def __init__(self, data_dir: str | Path | None = None):
        self.data_dir = Path(data_dir) if data_dir is not None else DATA_DIR
        self._write_lock = threading.Lock()

    def _state_path(self, project_id: str) -> Path:
        _check_project_id(project_id)
        return self.data_dir / project_id / STATE_FILENAME

    def _read(self, path: Path) -> dict:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def load(self, project_id: str) -> Project:
        path = self._state_path(project_id)
        if not path.exists():
            raise ProjectNotFoundError(project_id)
        data = self._read(path)
        errors = get_state_validation_errors(data)
        if errors:
            logger.error("Stored project %s fails schema validation: %s", project_id, errors)
            raise InvalidProjectStateError(errors)
        return Project.from_dict(data)

    def save(self, project_id: str, project: Project, expected_version: int | None = None) -> None:
        path = self._state_path(project_id)
        with self._write_lock:
            stored = self._read(path).get("version", 0) if path.exists() else None
            _check_version(project_id, stored, expected_version)

            previous_version = project.version
            project.version = (stored or 0) + 1
            try:
                data = _serialize(project)
            except InvalidProjectStateError:
                project.version = previous_version
                raise

            path.parent.mkdir(parents=True, exist_ok=True)
            # Atomic write: write to temp file in same directory, then replace
            fd, tmp_path = tempfile.mkstemp(
                dir=str(path.parent), suffix=".tmp", prefix="state_"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, str(path))
            except Exception:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                project.version = previous_version
                raise

    def exists(self, project_id: str) -> bool:
        return self._state_path(project_id).exists()

    def delete(self, project_id: str) -> bool:
        path = self._state_path(project_id)
        if not path.exists():
            return False
        try:
            shutil.rmtree(path.parent)
        except PermissionError as e:
            raise OSError(
                f"Cannot delete project '{project_id}': files are locked."
            ) from e
        return True

    def list_projects(self, user_id: str | None = None) -> list[Project]:
        projects = []
        if not self.data_dir.exists():
            return projects
        for project_dir in sorted(self.data_dir.iterdir()):
            if not (project_dir / STATE_FILENAME).exists():
                continue
            try:
                project = self.load(project_dir.name)
            except (InvalidProjectStateError, json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning("Skipping unreadable project %s: %s", project_dir.name, e)
                continue
            if user_id is None or project.user_id == user_id:
                projects.append(project)
        return projects


class InMemoryProjectRepository(ProjectRepository):
    """Keeps serialized snapshots in a dict; every load returns a fresh copy."""

    def __init__(self):
        self._projects: dict[str, dict] = {}
        self._write_lock = threading.Lock()

    def load(self, project_id: str) -> Project:
        data = self._projects.get(project_id)
        if data is None:
            raise ProjectNotFoundError(project_id)
        return Project.from_dict(data)

    def save(self, project_id: str, project: Project, expected_version: int | None = None) -> None:
        with self._write_lock:
            stored = self._projects.get(project_id)
            _check_version(project_id, stored["version"] if stored else None, expected_version)
            previous_version = project.version
            project.version = (stored["version"] if stored else 0) + 1
            try:
                self._projects[project_id] = _serialize(project)
            except InvalidProjectStateError:
                project.version = previous_version
                raise

    def exists(self, project_id: str) -> bool:
        return project_id in self._projects

    def delete(self, project_id: str) -> bool:
        return self._projects.pop(project_id, None) is not None

    def list_projects(self, user_id: str | None = None) -> list[Project]:
        return [
            Project.from_dict(data)
            for data in self._projects.values()
            if user_id is None or data.get("user_id") == user_id
        ]

    def clear(self) -> None:
        self._projects.clear()

    def count(self) -> int:
        return len(self._projects)
