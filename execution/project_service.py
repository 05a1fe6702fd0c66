"""Project use cases: the boundary the HTTP layer talks to.

Creation and administrative edits (goal, status) live here; every progress
change is delegated to the ProgressStateMachine as a command. The service
shares the machine's per-project lock registry so administrative writes and
progress updates for one project never interleave.
"""

import copy
import logging

from execution.commands import (
    AddCompletionResult,
    AdvancePhase,
    AdvanceSubstepSequential,
    AdvanceSubstepToNextIncomplete,
    CompleteSubstep,
    ExpandPhase,
    UnlockPhase,
)
from execution.completion_detector import (
    NO_RECOMMENDATION,
    CompletionAssessment,
    analyze_completion,
)
from execution.consistency import validate_project
from execution.errors import (
    PhaseAlreadyExpandedError,
    ProjectNotFoundError,
    RoadmapError,
    ValidationError,
)
from execution.phase_templates import build_roadmap
from execution.progress_state_machine import ChangeSummary, ProgressStateMachine
from execution.roadmap import Project, ProjectStatus, parse_phase_id, validate_goal
from execution.substep_generator import generate_substeps

logger = logging.getLogger(__name__)

ADVANCE_MODES = {
    "sequential": AdvanceSubstepSequential,
    "next_incomplete": AdvanceSubstepToNextIncomplete,
    "phase": AdvancePhase,
}

# Manual status changes; completed is only reached through the cascade
STATUS_TRANSITIONS = {
    ProjectStatus.ACTIVE: "resume",
    ProjectStatus.PAUSED: "pause",
    ProjectStatus.ARCHIVED: "archive",
}


class ProjectService:
    """Create, read, edit and progress projects.

    Args:
        repository: Project store shared with the state machine.
        machine: State machine to route progress commands through. Built
            over ``repository`` when omitted.
        substep_generator: Callable ``(phase, goal) -> list[Substep]`` used
            to expand phases. Defaults to the LLM generator with fallback.
    """

    def __init__(self, repository, machine: ProgressStateMachine | None = None, substep_generator=None):
        self.repository = repository
        self.machine = machine or ProgressStateMachine(repository)
        self.locks = self.machine.locks
        self._generate = substep_generator or generate_substeps

    # -- lifecycle ---------------------------------------------------------

    def create_project(self, goal: str, user_id: str | None = None, expand_first_phase: bool = True) -> Project:
        """Create a project with the P0-P7 roadmap and persist it.

        Raises:
            ValidationError: If the goal is invalid.
        """
        goal = validate_goal(goal)
        phases = build_roadmap()
        if expand_first_phase:
            first = phases[0]
            first.expand(self._generate(first, goal))

        project = Project.create(goal, phases, user_id=user_id)
        validate_project(project)
        self.repository.save(project.id, project)
        logger.info("Created project %s at %s", project.id, project.cursor.label())
        return project

    def get_project(self, project_id: str) -> Project:
        return self.repository.load(project_id)

    def list_projects(self, user_id: str | None = None) -> list[Project]:
        """Return projects, most recently updated first."""
        projects = self.repository.list_projects(user_id)
        return sorted(projects, key=lambda p: p.updated_at, reverse=True)

    def delete_project(self, project_id: str) -> None:
        with self.locks.hold(project_id):
            if not self.repository.delete(project_id):
                raise ProjectNotFoundError(project_id)
        self.locks.discard(project_id)
        logger.info("Deleted project %s", project_id)

    def update_project(self, project_id: str, goal: str | None = None, status: str | None = None) -> Project:
        """Edit the goal and/or lifecycle status of a project.

        ``completed`` is reached only through the completion cascade, so it
        cannot be set here, and a project whose phases are all complete
        cannot be reopened as active or paused.

        Raises:
            ValidationError: If the goal or status change is not allowed.
            ProjectNotFoundError: If the project does not exist.
        """
        with self.locks.hold(project_id):
            original = self.repository.load(project_id)
            project = copy.deepcopy(original)

            if goal is not None:
                project.change_goal(goal)

            if status is not None:
                new_status = ProjectStatus.parse(status)
                if new_status == ProjectStatus.COMPLETED:
                    raise ValidationError(
                        "Projects become completed automatically when every phase is done",
                        "status",
                    )
                if (
                    new_status in (ProjectStatus.ACTIVE, ProjectStatus.PAUSED)
                    and project.all_phases_completed()
                ):
                    raise ValidationError(
                        f"Every phase is complete; status cannot be set to {new_status.value}",
                        "status",
                    )
                if new_status != project.status:
                    logger.info(
                        "Project %s status %s -> %s",
                        project_id, project.status.value, new_status.value,
                    )
                getattr(project, STATUS_TRANSITIONS[new_status])()

            project.touch()
            validate_project(project)
            self.repository.save(project_id, project, expected_version=original.version)
        return project

    # -- progress ----------------------------------------------------------

    def expand_phase(self, project_id: str, phase_number) -> tuple[Project, ChangeSummary]:
        """Generate substeps for a phase and attach them.

        Raises:
            PhaseAlreadyExpandedError: If the phase already has substeps.
            ProjectClosedError: If the project is completed or archived.
            TargetNotFoundError: If the phase does not exist.
        """
        number = parse_phase_id(phase_number)
        project = self.repository.load(project_id)
        phase = project.require_phase(number)
        # Checked up front so no LLM call is spent on a phase that cannot take substeps
        if phase.expanded:
            raise PhaseAlreadyExpandedError(f"Phase {phase.phase_id} is already expanded")

        substeps = self._generate(phase, project.goal)
        return self.machine.apply_update(project_id, ExpandPhase(number, tuple(substeps)))

    def expand_next_if_ready(self, project: Project) -> Project:
        """Expand the cursor's phase if it is unlocked and waiting for substeps.

        Failures are logged and the unexpanded project is returned; the user
        can retry expansion explicitly.
        """
        if project.is_closed or not project.cursor.awaiting_expansion:
            return project
        phase = project.current_phase
        if phase is None or phase.locked or phase.expanded:
            return project
        try:
            expanded, _ = self.expand_phase(project.id, phase.phase_number)
        except RoadmapError as e:
            logger.warning("Automatic expansion of %s failed for project %s: %s", phase.phase_id, project.id, e)
            return project
        return expanded

    def complete_substep(self, project_id: str, phase, substep: int) -> tuple[Project, ChangeSummary]:
        """Complete a substep, then expand the next phase if the cursor reached it.

        The returned summary describes the completion itself; any follow-up
        expansion shows up in the returned project.
        """
        command = CompleteSubstep(parse_phase_id(phase), substep)
        project, summary = self.machine.apply_update(project_id, command)
        return self.expand_next_if_ready(project), summary

    def advance(self, project_id: str, mode: str = "sequential") -> tuple[Project, ChangeSummary]:
        command_type = ADVANCE_MODES.get(mode)
        if command_type is None:
            raise ValidationError(
                f"Unknown advance mode: {mode!r}. Use one of {sorted(ADVANCE_MODES)}", "mode"
            )
        project, summary = self.machine.apply_update(project_id, command_type())
        return self.expand_next_if_ready(project), summary

    def unlock_phase(self, project_id: str, phase) -> tuple[Project, ChangeSummary]:
        return self.machine.apply_update(project_id, UnlockPhase(parse_phase_id(phase)))

    def record_completion(self, project_id: str, phase, substep: int, completed_at=None) -> tuple[Project, ChangeSummary]:
        command = AddCompletionResult(parse_phase_id(phase), substep, completed_at)
        return self.machine.apply_update(project_id, command)

    # -- completion detection ----------------------------------------------

    def check_completion(self, project_id: str, messages: list[dict]) -> tuple[Project, CompletionAssessment]:
        """Run the completion detector against the current substep."""
        project = self.repository.load(project_id)
        substep = project.current_substep
        if project.is_closed or substep is None or substep.completed:
            return project, CompletionAssessment(
                recommendation=NO_RECOMMENDATION,
                score=0,
                confidence="low",
                missing=["No open substep at the current position"],
            )
        return project, analyze_completion(messages, substep.acceptance_criteria, substep.title)
