"""Structural consistency checks for project snapshots.

Run at the end of every state machine update and usable standalone.
Hard violations raise InvalidProjectStateError and are never corrected
here; soft findings are logged and returned as warnings.
"""

import logging

from execution.errors import InvalidProjectStateError
from execution.roadmap import Project, ProjectStatus

logger = logging.getLogger(__name__)


def find_violations(project: Project) -> tuple[list[str], list[str]]:
    """Collect hard violations and soft warnings for a snapshot.

    Args:
        project: The project snapshot to inspect.

    Returns:
        A (violations, warnings) tuple of human-readable messages.
    """
    violations: list[str] = []
    warnings: list[str] = []

    violations.extend(_check_cursor(project, warnings))

    for phase in project.phases:
        if phase.completed and not phase.all_substeps_completed():
            violations.append(
                f"Phase {phase.phase_id} is marked complete without a non-empty, "
                f"fully completed substep list"
            )
        if phase.completed and phase.completed_at is None:
            violations.append(f"Phase {phase.phase_id} is complete but has no completed_at")
        if not phase.completed and phase.all_substeps_completed():
            warnings.append(
                f"Phase {phase.phase_id} has all substeps complete but is not marked complete"
            )
        for substep in phase.substeps:
            if substep.completed != (substep.completed_at is not None):
                violations.append(
                    f"Substep {phase.phase_id}.{substep.number} has completed="
                    f"{substep.completed} but completed_at={substep.completed_at}"
                )

    all_done = project.all_phases_completed()
    if project.status == ProjectStatus.COMPLETED and not all_done:
        violations.append("Project status is completed but not every phase is complete")
    if all_done and project.status not in (ProjectStatus.COMPLETED, ProjectStatus.ARCHIVED):
        violations.append(
            f"Every phase is complete but project status is {project.status.value}"
        )

    found_locked = None
    for phase in sorted(project.phases, key=lambda p: p.phase_number):
        if phase.locked:
            found_locked = found_locked or phase
        elif found_locked is not None:
            warnings.append(
                f"Phase {phase.phase_id} is unlocked but earlier phase "
                f"{found_locked.phase_id} is locked"
            )

    return violations, warnings


def _check_cursor(project: Project, warnings: list[str]) -> list[str]:
    cursor = project.cursor
    phase = project.get_phase(cursor.phase_number)
    if phase is None:
        return [f"Cursor phase {cursor.phase_number} does not exist"]

    if phase.locked:
        warnings.append(f"Cursor sits on locked phase {phase.phase_id}")

    if cursor.awaiting_expansion:
        if phase.substeps:
            return [
                f"Cursor is awaiting expansion but phase {phase.phase_id} "
                f"already has {len(phase.substeps)} substeps"
            ]
        return []

    if not phase.substeps:
        return [
            f"Cursor points at substep {cursor.substep_number} but phase "
            f"{phase.phase_id} has no substeps"
        ]
    if cursor.substep_number == phase.last_substep_number + 1:
        warnings.append(
            f"Cursor parked past the last substep of phase {phase.phase_id} "
            f"({cursor.label()}); phase transition did not happen"
        )
        return []
    if phase.get_substep(cursor.substep_number) is None:
        return [
            f"Cursor substep {cursor.substep_number} not found in phase "
            f"{phase.phase_id} ({phase.last_substep_number} substeps)"
        ]
    return []


def validate_project(project: Project) -> list[str]:
    """Validate a snapshot, raising on any hard violation.

    Args:
        project: The project snapshot to validate.

    Returns:
        List of soft warnings (already logged).

    Raises:
        InvalidProjectStateError: If any hard invariant is violated.
    """
    violations, warnings = find_violations(project)
    for warning in warnings:
        logger.warning("Project %s: %s", project.id, warning)
    if violations:
        logger.error(
            "Project %s failed consistency validation: %s",
            project.id, "; ".join(violations),
        )
        raise InvalidProjectStateError(violations)
    return warnings
