"""Update commands accepted by the progress state machine.

Each command is a small frozen dataclass; exactly one is applied per
``ProgressStateMachine.apply_update`` call.
"""

from dataclasses import dataclass, field
from datetime import datetime

from execution.errors import ValidationError
from execution.roadmap import Substep


def _check_phase_number(value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"Invalid phase number: {value!r}", "phase")


def _check_substep_number(value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"Invalid substep number: {value!r}", "substep")


@dataclass(frozen=True)
class CompleteSubstep:
    """Mark a specific substep complete regardless of the cursor position."""

    phase_number: int
    substep_number: int

    def __post_init__(self):
        _check_phase_number(self.phase_number)
        _check_substep_number(self.substep_number)


@dataclass(frozen=True)
class AdvanceSubstepSequential:
    """Manual mode: move the cursor to the next substep number."""


@dataclass(frozen=True)
class AdvanceSubstepToNextIncomplete:
    """AI mode: move the cursor to the next substep that is not yet complete."""


@dataclass(frozen=True)
class AdvancePhase:
    """Force the cursor into the next phase if it is unlocked."""


@dataclass(frozen=True)
class UnlockPhase:
    """Administrative override: unlock a phase regardless of completion."""

    phase_number: int

    def __post_init__(self):
        _check_phase_number(self.phase_number)


@dataclass(frozen=True)
class AddCompletionResult:
    """Idempotent append to the completion-history ledger."""

    phase_number: int
    substep_number: int
    completed_at: datetime | None = None

    def __post_init__(self):
        _check_phase_number(self.phase_number)
        _check_substep_number(self.substep_number)


@dataclass(frozen=True)
class ExpandPhase:
    """Attach generated substeps to a phase that has none yet."""

    phase_number: int
    substeps: tuple[Substep, ...] = field(default_factory=tuple)

    def __post_init__(self):
        _check_phase_number(self.phase_number)


Command = (
    CompleteSubstep
    | AdvanceSubstepSequential
    | AdvanceSubstepToNextIncomplete
    | AdvancePhase
    | UnlockPhase
    | AddCompletionResult
    | ExpandPhase
)


def target_phase(command: Command) -> int | None:
    """Return the phase number a command addresses directly, if any."""
    return getattr(command, "phase_number", None)
