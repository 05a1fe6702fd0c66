"""Roadmap entities: Substep, Phase and Project.

A Project owns a single ordered list of Phases; each Phase owns an ordered
list of Substeps. Mutators are guarded: they raise typed errors from
``execution.errors`` instead of silently ignoring bad requests. Cross-entity
rules (cascades, cursor movement, locking at the command boundary) live in
``execution.progress_state_machine``.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from config.settings import GOAL_MAX_LENGTH, GOAL_MIN_LENGTH
from execution.errors import (
    AlreadyCompletedError,
    PhaseAlreadyExpandedError,
    PhaseIncompleteError,
    PhaseLockedError,
    TargetNotFoundError,
    ValidationError,
)


def _now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def format_phase_id(phase_number: int) -> str:
    """Return the human-readable id for a phase number (0 -> "P0")."""
    return f"P{phase_number}"


def parse_phase_id(value) -> int:
    """Normalize a phase reference ("P2", "2" or 2) to its integer number.

    Raises:
        ValidationError: If the value is not a non-negative phase reference.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid phase reference: {value!r}", "phase")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        match = re.fullmatch(r"\s*[Pp]?(\d+)\s*", value)
        if not match:
            raise ValidationError(f"Invalid phase reference: {value!r}", "phase")
        number = int(match.group(1))
    else:
        raise ValidationError(f"Invalid phase reference: {value!r}", "phase")
    if number < 0:
        raise ValidationError("Phase number must not be negative", "phase")
    return number


def validate_goal(goal: str) -> str:
    """Trim and validate a project goal.

    Returns:
        The trimmed goal.

    Raises:
        ValidationError: If the goal is too short, too long, or has no letter.
    """
    if not isinstance(goal, str):
        raise ValidationError("Goal must be a string", "goal")
    value = goal.strip()
    if len(value) < GOAL_MIN_LENGTH:
        raise ValidationError(
            f"Goal must be at least {GOAL_MIN_LENGTH} characters long", "goal"
        )
    if len(value) > GOAL_MAX_LENGTH:
        raise ValidationError(
            f"Goal must be {GOAL_MAX_LENGTH} characters or less", "goal"
        )
    if not re.search(r"[a-zA-Z]", value):
        raise ValidationError("Goal must contain at least one letter", "goal")
    return value


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: str) -> "ProjectStatus":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid project status: {value}", "status") from None


@dataclass(frozen=True)
class Cursor:
    """The project's current position.

    ``substep_number`` is None while the current phase has no substeps yet
    and is waiting to be expanded.
    """

    phase_number: int
    substep_number: int | None = 1

    @property
    def awaiting_expansion(self) -> bool:
        return self.substep_number is None

    def label(self) -> str:
        if self.awaiting_expansion:
            return f"{format_phase_id(self.phase_number)} (awaiting expansion)"
        return f"{format_phase_id(self.phase_number)}.{self.substep_number}"

    def to_dict(self) -> dict:
        return {"phase": self.phase_number, "substep": self.substep_number}


@dataclass
class Substep:
    """Smallest unit of work inside a phase."""

    id: str
    number: int
    title: str
    description: str = ""
    estimated_minutes: int = 20
    tools_needed: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    completed: bool = False
    completed_at: datetime | None = None

    def __post_init__(self):
        if self.number < 1:
            raise ValidationError("Substep number must be 1 or greater", "number")
        if self.estimated_minutes < 1:
            raise ValidationError(
                "Estimated minutes must be a positive integer", "estimated_minutes"
            )

    def complete(self, at: datetime | None = None) -> None:
        """Mark the substep complete.

        Raises:
            AlreadyCompletedError: If the substep was already complete.
        """
        if self.completed:
            raise AlreadyCompletedError(f"Substep {self.id} is already completed")
        self.completed = True
        self.completed_at = at or _now()

    def uncomplete(self) -> None:
        self.completed = False
        self.completed_at = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "estimated_minutes": self.estimated_minutes,
            "tools_needed": list(self.tools_needed),
            "acceptance_criteria": list(self.acceptance_criteria),
            "completed": self.completed,
            "completed_at": _to_iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Substep":
        return cls(
            id=data["id"],
            number=data["number"],
            title=data["title"],
            description=data.get("description", ""),
            estimated_minutes=data.get("estimated_minutes", 20),
            tools_needed=list(data.get("tools_needed", [])),
            acceptance_criteria=list(data.get("acceptance_criteria", [])),
            completed=data.get("completed", False),
            completed_at=_from_iso(data.get("completed_at")),
        )


@dataclass
class Phase:
    """An ordered collection of substeps with lock/expand/complete status."""

    id: str
    phase_number: int
    title: str
    goal: str = ""
    description: str = ""
    substeps: list[Substep] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    expanded: bool = False
    locked: bool = True
    completed: bool = False
    completed_at: datetime | None = None

    @property
    def phase_id(self) -> str:
        return format_phase_id(self.phase_number)

    @property
    def last_substep_number(self) -> int:
        return len(self.substeps)

    def get_substep(self, number: int) -> Substep | None:
        for substep in self.substeps:
            if substep.number == number:
                return substep
        return None

    def require_substep(self, number: int) -> Substep:
        substep = self.get_substep(number)
        if substep is None:
            raise TargetNotFoundError("substep", self.phase_number, number)
        return substep

    def expand(self, substeps: list[Substep]) -> None:
        """Attach generated substeps. Allowed exactly once.

        Raises:
            PhaseAlreadyExpandedError: If the phase was already expanded.
            ValidationError: If the substep list is empty or misnumbered.
        """
        if self.expanded:
            raise PhaseAlreadyExpandedError(f"Phase {self.phase_id} is already expanded")
        if not substeps:
            raise ValidationError(
                f"Phase {self.phase_id} cannot be expanded with zero substeps", "substeps"
            )
        numbers = [s.number for s in substeps]
        if numbers != list(range(1, len(substeps) + 1)):
            raise ValidationError(
                f"Substeps must be numbered 1..{len(substeps)}, got {numbers}", "substeps"
            )
        self.substeps = list(substeps)
        self.expanded = True

    def add_substep(
        self,
        title: str,
        description: str = "",
        estimated_minutes: int = 20,
        tools_needed: list[str] | None = None,
    ) -> Substep:
        """Append a substep to an expanded phase (adaptive roadmap flow).

        Raises:
            PhaseLockedError: If the phase is locked.
            AlreadyCompletedError: If the phase is already complete.
        """
        if self.locked:
            raise PhaseLockedError(f"Cannot add substep to locked phase {self.phase_id}")
        if self.completed:
            raise AlreadyCompletedError(
                f"Cannot add substep to completed phase {self.phase_id}"
            )
        substep = Substep(
            id=str(uuid.uuid4()),
            number=self.last_substep_number + 1,
            title=title,
            description=description,
            estimated_minutes=estimated_minutes,
            tools_needed=list(tools_needed or []),
        )
        self.substeps.append(substep)
        self.expanded = True
        return substep

    def unlock(self) -> None:
        self.locked = False

    def lock(self) -> None:
        self.locked = True

    def all_substeps_completed(self) -> bool:
        """True when the phase has substeps and every one is complete."""
        return bool(self.substeps) and all(s.completed for s in self.substeps)

    def complete(self, at: datetime | None = None) -> None:
        """Mark the phase complete.

        Raises:
            PhaseIncompleteError: If any substep is unfinished or none exist.
        """
        if not self.all_substeps_completed():
            raise PhaseIncompleteError(
                f"Cannot complete phase {self.phase_id}: not all substeps completed"
            )
        self.completed = True
        self.completed_at = at or _now()

    def completed_count(self) -> int:
        return sum(1 for s in self.substeps if s.completed)

    def progress(self) -> float:
        """Percentage of completed substeps (0.0 when not yet expanded)."""
        if not self.substeps:
            return 0.0
        return self.completed_count() / len(self.substeps) * 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_number": self.phase_number,
            "phase_id": self.phase_id,
            "title": self.title,
            "goal": self.goal,
            "description": self.description,
            "substeps": [s.to_dict() for s in self.substeps],
            "acceptance_criteria": list(self.acceptance_criteria),
            "expanded": self.expanded,
            "locked": self.locked,
            "completed": self.completed,
            "completed_at": _to_iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Phase":
        return cls(
            id=data["id"],
            phase_number=data["phase_number"],
            title=data["title"],
            goal=data.get("goal", ""),
            description=data.get("description", ""),
            substeps=[Substep.from_dict(s) for s in data.get("substeps", [])],
            acceptance_criteria=list(data.get("acceptance_criteria", [])),
            expanded=data.get("expanded", False),
            locked=data.get("locked", True),
            completed=data.get("completed", False),
            completed_at=_from_iso(data.get("completed_at")),
        )


@dataclass
class CompletionRecord:
    """One entry of the completion-history ledger."""

    phase_number: int
    substep_number: int
    completed_at: datetime

    def to_dict(self) -> dict:
        return {
            "phase_number": self.phase_number,
            "substep_number": self.substep_number,
            "completed_at": _to_iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CompletionRecord":
        return cls(
            phase_number=data["phase_number"],
            substep_number=data["substep_number"],
            completed_at=_from_iso(data["completed_at"]),
        )


@dataclass
class Project:
    """Aggregate root: the roadmap plus the current-position cursor."""

    id: str
    goal: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    phases: list[Phase] = field(default_factory=list)
    cursor: Cursor = field(default_factory=lambda: Cursor(0, 1))
    completed_substeps: list[CompletionRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    user_id: str | None = None
    version: int = 0

    @classmethod
    def create(
        cls,
        goal: str,
        phases: list[Phase],
        user_id: str | None = None,
        project_id: str | None = None,
    ) -> "Project":
        """Create an active project with the cursor on its first phase."""
        goal = validate_goal(goal)
        ordered = sorted(phases, key=lambda p: p.phase_number)
        if ordered:
            first = ordered[0]
            cursor = Cursor(first.phase_number, 1 if first.substeps else None)
        else:
            cursor = Cursor(0, None)
        now = _now()
        return cls(
            id=project_id or str(uuid.uuid4()),
            goal=goal,
            phases=ordered,
            cursor=cursor,
            created_at=now,
            updated_at=now,
            user_id=user_id,
        )

    # -- lookups -----------------------------------------------------------

    def get_phase(self, phase_number: int) -> Phase | None:
        for phase in self.phases:
            if phase.phase_number == phase_number:
                return phase
        return None

    def require_phase(self, phase_number: int) -> Phase:
        phase = self.get_phase(phase_number)
        if phase is None:
            raise TargetNotFoundError("phase", phase_number)
        return phase

    def next_phase(self, phase_number: int) -> Phase | None:
        return self.get_phase(phase_number + 1)

    @property
    def current_phase(self) -> Phase | None:
        return self.get_phase(self.cursor.phase_number)

    @property
    def current_substep(self) -> Substep | None:
        phase = self.current_phase
        if phase is None or self.cursor.awaiting_expansion:
            return None
        return phase.get_substep(self.cursor.substep_number)

    @property
    def is_closed(self) -> bool:
        """Completed and archived projects accept no further progress."""
        return self.status in (ProjectStatus.COMPLETED, ProjectStatus.ARCHIVED)

    def all_phases_completed(self) -> bool:
        return bool(self.phases) and all(p.completed for p in self.phases)

    def overall_progress(self) -> float:
        if not self.phases:
            return 0.0
        return sum(p.progress() for p in self.phases) / len(self.phases)

    # -- mutators ----------------------------------------------------------

    def touch(self) -> None:
        """Refresh updated_at without ever moving it backwards."""
        self.updated_at = max(_now(), self.updated_at)

    def change_goal(self, goal: str) -> None:
        self.goal = validate_goal(goal)
        self.touch()

    def pause(self) -> None:
        self.status = ProjectStatus.PAUSED
        self.touch()

    def resume(self) -> None:
        self.status = ProjectStatus.ACTIVE
        self.touch()

    def archive(self) -> None:
        self.status = ProjectStatus.ARCHIVED
        self.touch()

    def record_completion(
        self, phase_number: int, substep_number: int, completed_at: datetime | None = None
    ) -> bool:
        """Append to the completion ledger. Duplicate pairs are ignored.

        Returns:
            True if a new entry was added.
        """
        for record in self.completed_substeps:
            if record.phase_number == phase_number and record.substep_number == substep_number:
                return False
        self.completed_substeps.append(
            CompletionRecord(phase_number, substep_number, completed_at or _now())
        )
        return True

    # -- serialization -----------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "goal": self.goal,
            "status": self.status.value,
            "user_id": self.user_id,
            "current_phase": self.cursor.phase_number,
            "current_substep": self.cursor.substep_number,
            "phases": [p.to_dict() for p in self.phases],
            "completed_substeps": [r.to_dict() for r in self.completed_substeps],
            "created_at": _to_iso(self.created_at),
            "updated_at": _to_iso(self.updated_at),
            "version": self.version,
            "progress": round(self.overall_progress(), 1),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        substep_number = data.get("current_substep")
        # Older snapshots used 0 to mean "needs expansion"
        if substep_number == 0:
            substep_number = None
        return cls(
            id=data["id"],
            goal=data["goal"],
            status=ProjectStatus.parse(data.get("status", "active")),
            phases=[Phase.from_dict(p) for p in data.get("phases", [])],
            cursor=Cursor(data.get("current_phase", 0), substep_number),
            completed_substeps=[
                CompletionRecord.from_dict(r) for r in data.get("completed_substeps", [])
            ],
            created_at=_from_iso(data["created_at"]),
            updated_at=_from_iso(data["updated_at"]),
            user_id=data.get("user_id"),
            version=data.get("version", 0),
        )
