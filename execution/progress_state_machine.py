"""Progress state machine: the single path through which project progress changes.

Every update runs the same pipeline:

1. Load the snapshot from the repository.
2. Apply the command's direct effect to a working copy.
3. Run the completion cascade to a fixed point (phase completion, unlock of
   the following phase, auto-advance of the cursor, project completion).
4. Validate structural consistency.
5. Persist with a compare-and-swap on the project version.
6. Diff the before/after snapshots into a ChangeSummary and notify listeners.

Updates for the same project id are serialized by a per-id lock held across
load-validate-save, so two in-flight requests can never interleave their
read-modify-write cycles within one process. The repository's version check
rejects writers from other processes instead of letting them clobber state.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable

from execution.commands import (
    AddCompletionResult,
    AdvancePhase,
    AdvanceSubstepSequential,
    AdvanceSubstepToNextIncomplete,
    Command,
    CompleteSubstep,
    ExpandPhase,
    UnlockPhase,
    target_phase,
)
from execution.consistency import validate_project
from execution.errors import (
    PhaseLockedError,
    ProjectClosedError,
    TargetNotFoundError,
)
from execution.roadmap import Cursor, Project, ProjectStatus, format_phase_id

logger = logging.getLogger(__name__)


class ProjectLocks:
    """Registry of one lock per project id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_project(self, project_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = self._locks[project_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, project_id: str):
        with self.for_project(project_id):
            yield

    def discard(self, project_id: str) -> None:
        with self._guard:
            self._locks.pop(project_id, None)


@dataclass
class ChangeSummary:
    """Structured diff produced by one successful update."""

    project_id: str
    command: str
    previous_position: Cursor
    new_position: Cursor
    substep_completed: tuple[int, int] | None = None
    phases_completed: list[int] = field(default_factory=list)
    phases_unlocked: list[int] = field(default_factory=list)
    phase_expanded: int | None = None
    status_changed: str | None = None
    ledger_added: bool = False

    @property
    def advanced(self) -> bool:
        return self.previous_position != self.new_position

    @property
    def phase_completed(self) -> int | None:
        return self.phases_completed[0] if self.phases_completed else None

    @property
    def phase_unlocked(self) -> int | None:
        return self.phases_unlocked[0] if self.phases_unlocked else None

    def describe(self) -> str:
        """Compact one-line description for logs and downstream prompts."""
        parts = []
        if self.substep_completed:
            phase_number, substep_number = self.substep_completed
            parts.append(f"Completed {format_phase_id(phase_number)}.{substep_number}")
        for number in self.phases_completed:
            parts.append(f"Phase {format_phase_id(number)} completed")
        for number in self.phases_unlocked:
            parts.append(f"Unlocked {format_phase_id(number)}")
        if self.phase_expanded is not None:
            parts.append(f"Expanded {format_phase_id(self.phase_expanded)}")
        if self.status_changed:
            parts.append(f"Project {self.status_changed}")
        parts.append(f"Now at {self.new_position.label()}")
        return " | ".join(parts)

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "command": self.command,
            "previous_position": self.previous_position.to_dict(),
            "new_position": self.new_position.to_dict(),
            "advanced": self.advanced,
            "substep_completed": (
                {"phase": self.substep_completed[0], "substep": self.substep_completed[1]}
                if self.substep_completed else None
            ),
            "phases_completed": list(self.phases_completed),
            "phases_unlocked": list(self.phases_unlocked),
            "phase_expanded": self.phase_expanded,
            "status_changed": self.status_changed,
            "ledger_added": self.ledger_added,
            "summary": self.describe(),
        }


StateChangeListener = Callable[[ChangeSummary, Project], None]


def detect_changes(before: Project, after: Project, command: Command) -> ChangeSummary:
    """Diff two snapshots of the same project into a ChangeSummary."""
    previous_phases = {p.phase_number: p for p in before.phases}
    phases_completed = []
    phases_unlocked = []
    for phase in after.phases:
        old = previous_phases.get(phase.phase_number)
        if old is None:
            continue
        if phase.completed and not old.completed:
            phases_completed.append(phase.phase_number)
        if old.locked and not phase.locked:
            phases_unlocked.append(phase.phase_number)

    substep_completed = None
    if isinstance(command, CompleteSubstep):
        substep_completed = (command.phase_number, command.substep_number)

    return ChangeSummary(
        project_id=after.id,
        command=type(command).__name__,
        previous_position=before.cursor,
        new_position=after.cursor,
        substep_completed=substep_completed,
        phases_completed=phases_completed,
        phases_unlocked=phases_unlocked,
        phase_expanded=command.phase_number if isinstance(command, ExpandPhase) else None,
        status_changed=after.status.value if after.status != before.status else None,
        ledger_added=len(after.completed_substeps) > len(before.completed_substeps),
    )


class ProgressStateMachine:
    """Applies update commands to stored projects, one consistent snapshot at a time.

    Args:
        repository: Store used to load and persist project snapshots.
        locks: Optional shared per-project lock registry. Pass the same
            registry to every component that writes projects.
    """

    def __init__(self, repository, locks: ProjectLocks | None = None):
        self.repository = repository
        self.locks = locks or ProjectLocks()
        self._listeners: list[StateChangeListener] = []

    def on_state_change(self, listener: StateChangeListener) -> None:
        """Register a listener called after every successful update."""
        self._listeners.append(listener)

    def apply_update(self, project_id: str, command: Command) -> tuple[Project, ChangeSummary]:
        """Apply one command atomically and return the new snapshot and its diff.

        Raises:
            ProjectNotFoundError: If the project does not exist.
            TargetNotFoundError: If the command addresses a missing phase or substep.
            AlreadyCompletedError: If a substep is completed twice.
            PhaseLockedError: If the command addresses a locked phase.
            ProjectClosedError: If progress is recorded on a closed project.
            InvalidProjectStateError: If the resulting snapshot is inconsistent.
            ConcurrentUpdateError: If another writer saved first.
        """
        logger.info("Applying %s to project %s", command, project_id)
        with self.locks.hold(project_id):
            original = self.repository.load(project_id)
            working = copy.deepcopy(original)

            self._apply_command(working, command)

            candidates = {original.cursor.phase_number}
            if target_phase(command) is not None:
                candidates.add(target_phase(command))
            self._run_cascade(working, candidates)

            working.touch()
            validate_project(working)
            self.repository.save(project_id, working, expected_version=original.version)
            summary = detect_changes(original, working, command)

        logger.info("Project %s updated: %s", project_id, summary.describe())
        self._notify(summary, working)
        return working, summary

    # -- direct effects ----------------------------------------------------

    def _apply_command(self, project: Project, command: Command) -> None:
        if isinstance(command, CompleteSubstep):
            self._complete_substep(project, command)
        elif isinstance(command, AdvanceSubstepSequential):
            self._ensure_open(project)
            self._advance_sequential(project)
        elif isinstance(command, AdvanceSubstepToNextIncomplete):
            self._ensure_open(project)
            self._advance_to_next_incomplete(project)
        elif isinstance(command, AdvancePhase):
            self._ensure_open(project)
            self._advance_phase(project)
        elif isinstance(command, UnlockPhase):
            phase = project.require_phase(command.phase_number)
            if not phase.locked:
                logger.info("Phase %s was already unlocked", phase.phase_id)
            phase.unlock()
        elif isinstance(command, AddCompletionResult):
            project.require_phase(command.phase_number).require_substep(command.substep_number)
            if not project.record_completion(
                command.phase_number, command.substep_number, command.completed_at
            ):
                logger.info(
                    "Completion for %s.%d already recorded",
                    format_phase_id(command.phase_number), command.substep_number,
                )
        elif isinstance(command, ExpandPhase):
            self._expand_phase(project, command)
        else:
            raise TypeError(f"Unsupported command: {command!r}")

    @staticmethod
    def _ensure_open(project: Project) -> None:
        if project.is_closed:
            raise ProjectClosedError(
                f"Project {project.id} is {project.status.value}; no further progress accepted"
            )

    def _complete_substep(self, project: Project, command: CompleteSubstep) -> None:
        phase = project.require_phase(command.phase_number)
        substep = phase.require_substep(command.substep_number)
        self._ensure_open(project)
        if phase.locked:
            raise PhaseLockedError(f"Phase {phase.phase_id} is locked")

        substep.complete()
        project.record_completion(phase.phase_number, substep.number, substep.completed_at)

        # Only the substep under the cursor moves the cursor
        cursor = project.cursor
        if cursor.phase_number == phase.phase_number and cursor.substep_number == substep.number:
            project.cursor = Cursor(phase.phase_number, substep.number + 1)

    def _current_phase_or_fail(self, project: Project):
        phase = project.current_phase
        if phase is None:
            raise TargetNotFoundError("phase", project.cursor.phase_number)
        return phase

    def _advance_sequential(self, project: Project) -> None:
        phase = self._current_phase_or_fail(project)
        cursor = project.cursor
        if cursor.awaiting_expansion:
            logger.info("Cannot advance: phase %s is awaiting expansion", phase.phase_id)
            return
        if cursor.substep_number > phase.last_substep_number:
            logger.info(
                "Already beyond last substep of %s (%s), not advancing",
                phase.phase_id, cursor.label(),
            )
            return
        # One past the last substep is the signal for the cascade to change phase
        project.cursor = Cursor(phase.phase_number, cursor.substep_number + 1)

    def _advance_to_next_incomplete(self, project: Project) -> None:
        phase = self._current_phase_or_fail(project)
        cursor = project.cursor
        if cursor.awaiting_expansion:
            logger.info("Cannot advance: phase %s is awaiting expansion", phase.phase_id)
            return
        remaining = [
            s.number for s in phase.substeps
            if s.number > cursor.substep_number and not s.completed
        ]
        if remaining:
            project.cursor = Cursor(phase.phase_number, min(remaining))
        elif phase.all_substeps_completed():
            project.cursor = Cursor(phase.phase_number, phase.last_substep_number + 1)
        else:
            logger.info(
                "No later incomplete substep in %s; cursor stays at %s",
                phase.phase_id, cursor.label(),
            )

    def _advance_phase(self, project: Project) -> None:
        current = project.cursor.phase_number
        next_phase = project.next_phase(current)
        if next_phase is None:
            raise TargetNotFoundError("phase", current + 1)
        if next_phase.locked:
            raise PhaseLockedError(f"Cannot advance to phase {next_phase.phase_id}: still locked")
        project.cursor = Cursor(next_phase.phase_number, 1 if next_phase.substeps else None)

    def _expand_phase(self, project: Project, command: ExpandPhase) -> None:
        phase = project.require_phase(command.phase_number)
        self._ensure_open(project)
        phase.expand(list(command.substeps))
        cursor = project.cursor
        if cursor.phase_number == phase.phase_number and cursor.awaiting_expansion:
            project.cursor = Cursor(phase.phase_number, 1)

    # -- completion cascade ------------------------------------------------

    def _run_cascade(self, project: Project, candidates: set[int]) -> None:
        """Repeat completion, unlock and auto-advance until nothing changes."""
        # Each pass either changes something or stops; the bound guards defects
        for _ in range(2 * len(project.phases) + 2):
            changed = False

            for number in sorted(candidates | {project.cursor.phase_number}):
                phase = project.get_phase(number)
                if phase is not None and not phase.completed and phase.all_substeps_completed():
                    phase.complete()
                    logger.info("Phase %s is now complete", phase.phase_id)
                    changed = True

            for phase in project.phases:
                if not phase.completed:
                    continue
                following = project.next_phase(phase.phase_number)
                if following is not None and following.locked:
                    following.unlock()
                    logger.info(
                        "Unlocked phase %s (phase %s complete)",
                        following.phase_id, phase.phase_id,
                    )
                    changed = True

            if self._auto_advance(project):
                changed = True

            if (
                project.all_phases_completed()
                and project.status in (ProjectStatus.ACTIVE, ProjectStatus.PAUSED)
            ):
                project.status = ProjectStatus.COMPLETED
                logger.info("Project %s completed every phase", project.id)
                changed = True

            if not changed:
                return
        logger.error("Completion cascade for project %s did not settle", project.id)

    @staticmethod
    def _auto_advance(project: Project) -> bool:
        cursor = project.cursor
        phase = project.current_phase
        if phase is None or not phase.completed or cursor.awaiting_expansion:
            return False
        if cursor.substep_number <= phase.last_substep_number:
            # Still sitting on an addressable substep; out-of-order completions land here
            return False

        next_phase = project.next_phase(phase.phase_number)
        if next_phase is None:
            project.cursor = Cursor(phase.phase_number, phase.last_substep_number)
            return True
        if next_phase.locked:
            logger.warning(
                "Phase %s complete but %s is still locked; cursor stays at %s",
                phase.phase_id, next_phase.phase_id, cursor.label(),
            )
            return False
        project.cursor = Cursor(next_phase.phase_number, 1 if next_phase.substeps else None)
        logger.info("Advanced %s -> %s", cursor.label(), project.cursor.label())
        return True

    # -- notification ------------------------------------------------------

    def _notify(self, summary: ChangeSummary, project: Project) -> None:
        for listener in self._listeners:
            try:
                listener(summary, project)
            except Exception:
                logger.exception("State change listener failed for project %s", project.id)
