"""Typed errors raised by the roadmap core.

Every error carries a stable ``code`` so the web layer can map it to a
status code without inspecting message text.
"""


class RoadmapError(Exception):
    """Base class for all roadmap business errors."""

    code = "ROADMAP_ERROR"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class ValidationError(RoadmapError, ValueError):
    """Raised when caller-supplied input fails validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class ProjectNotFoundError(RoadmapError):
    """Raised when a project id does not resolve to a stored project."""

    code = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        super().__init__(f"Project '{project_id}' not found")
        self.project_id = project_id


class TargetNotFoundError(RoadmapError):
    """Raised when a command addresses a phase or substep that does not exist."""

    code = "TARGET_NOT_FOUND"

    def __init__(self, target: str, phase_number: int, substep_number: int | None = None):
        if target == "substep":
            message = f"Substep {substep_number} not found in phase {phase_number}"
        else:
            message = f"Phase {phase_number} not found"
        super().__init__(message)
        self.target = target
        self.phase_number = phase_number
        self.substep_number = substep_number

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["target"] = self.target
        return data


class AlreadyCompletedError(RoadmapError):
    """Raised when a substep is completed a second time."""

    code = "ALREADY_COMPLETED"


class PhaseIncompleteError(RoadmapError):
    """Raised when a phase is completed while substeps remain unfinished."""

    code = "PHASE_INCOMPLETE"


class PhaseAlreadyExpandedError(RoadmapError):
    """Raised when substeps are attached to a phase twice."""

    code = "PHASE_ALREADY_EXPANDED"


class PhaseLockedError(RoadmapError):
    """Raised when a command addresses a phase that is still locked."""

    code = "PHASE_LOCKED"


class ProjectClosedError(RoadmapError):
    """Raised when progress is recorded on a completed or archived project."""

    code = "PROJECT_CLOSED"


class InvalidProjectStateError(RoadmapError):
    """Raised when a snapshot violates a structural invariant.

    Indicates a defect in the cascade logic or an external mutation that
    bypassed the state machine. Never auto-healed.
    """

    code = "INVALID_PROJECT_STATE"

    def __init__(self, violations: list[str]):
        super().__init__("Invalid project state: " + "; ".join(violations))
        self.violations = list(violations)


class ConcurrentUpdateError(RoadmapError):
    """Raised when a save loses a compare-and-swap race on the project version."""

    code = "CONCURRENT_UPDATE"
