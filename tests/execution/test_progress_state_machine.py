"""Tests for the progress state machine: commands, cascade, persistence and notification."""

import copy
import threading

import pytest

from execution.commands import (
    AddCompletionResult,
    AdvancePhase,
    AdvanceSubstepSequential,
    AdvanceSubstepToNextIncomplete,
    Command,
    CompleteSubstep,
    ExpandPhase,
    UnlockPhase,
)
from execution.errors import (
    AlreadyCompletedError,
    ConcurrentUpdateError,
    InvalidProjectStateError,
    PhaseAlreadyExpandedError,
    PhaseLockedError,
    ProjectClosedError,
    ProjectNotFoundError,
    TargetNotFoundError,
    ValidationError,
)
from execution.progress_state_machine import ProgressStateMachine, detect_changes
from execution.project_repository import InMemoryProjectRepository
from execution.roadmap import Cursor, ProjectStatus


@pytest.fixture
def final_phase_project(make_phase, make_project):
    """P0 complete, P1 unlocked with substep 1 done and the cursor on P1.2."""
    done = make_phase(0, 2, locked=False, completed=(1, 2))
    done.complete()
    last = make_phase(1, 2, locked=False, completed=(1,))
    return make_project([done, last], cursor=Cursor(1, 2))


class TestCompleteSubstep:

    def test_scenario_a_completing_current_substeps_walks_into_next_phase(
        self, machine, store, two_phase_project
    ):
        project_id = store(two_phase_project)

        project, summary = machine.apply_update(project_id, CompleteSubstep(0, 1))
        assert project.cursor == Cursor(0, 2)
        assert summary.substep_completed == (0, 1)
        assert summary.phases_completed == []

        project, summary = machine.apply_update(project_id, CompleteSubstep(0, 2))
        p0, p1 = project.phases
        assert p0.completed is True
        assert p0.completed_at is not None
        assert p1.locked is False
        assert project.cursor == Cursor(1, 1)
        assert summary.phase_completed == 0
        assert summary.phase_unlocked == 1
        assert summary.advanced is True
        assert summary.describe() == "Completed P0.2 | Phase P0 completed | Unlocked P1 | Now at P1.1"

    def test_scenario_b_second_completion_fails_without_side_effects(
        self, machine, repository, store, two_phase_project
    ):
        project_id = store(two_phase_project)
        machine.apply_update(project_id, CompleteSubstep(0, 1))
        before = repository.load(project_id)

        with pytest.raises(AlreadyCompletedError):
            machine.apply_update(project_id, CompleteSubstep(0, 1))

        after = repository.load(project_id)
        assert after.updated_at == before.updated_at
        assert after.cursor == before.cursor
        assert after.version == before.version

    def test_scenario_c_unknown_phase_persists_nothing(self, machine, repository, store, two_phase_project):
        project_id = store(two_phase_project)
        version = repository.load(project_id).version

        with pytest.raises(TargetNotFoundError) as exc_info:
            machine.apply_update(project_id, CompleteSubstep(99, 1))

        assert exc_info.value.target == "phase"
        assert exc_info.value.phase_number == 99
        assert repository.load(project_id).version == version

    def test_unknown_substep_identifies_substep(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        with pytest.raises(TargetNotFoundError) as exc_info:
            machine.apply_update(project_id, CompleteSubstep(0, 9))
        assert exc_info.value.target == "substep"

    def test_scenario_d_out_of_order_completion_keeps_cursor(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)

        project, summary = machine.apply_update(project_id, CompleteSubstep(0, 2))

        assert project.phases[0].substeps[1].completed is True
        assert project.cursor == Cursor(0, 1)
        assert summary.advanced is False

    def test_completing_current_after_out_of_order_does_not_jump_phase(
        self, machine, store, two_phase_project
    ):
        project_id = store(two_phase_project)
        machine.apply_update(project_id, CompleteSubstep(0, 2))

        project, summary = machine.apply_update(project_id, CompleteSubstep(0, 1))

        # The phase completes and P1 unlocks, but P0.2 is still addressable
        assert project.phases[0].completed is True
        assert project.phases[1].locked is False
        assert project.cursor == Cursor(0, 2)

        project, _ = machine.apply_update(project_id, AdvanceSubstepSequential())
        assert project.cursor == Cursor(1, 1)

    def test_scenario_e_last_substep_completes_project(self, machine, store, final_phase_project):
        project_id = store(final_phase_project)

        project, summary = machine.apply_update(project_id, CompleteSubstep(1, 2))

        assert project.status == ProjectStatus.COMPLETED
        assert project.cursor == Cursor(1, 2)
        assert summary.status_changed == "completed"
        assert summary.phases_completed == [1]

    def test_completed_project_rejects_further_completion(self, machine, store, final_phase_project):
        project_id = store(final_phase_project)
        machine.apply_update(project_id, CompleteSubstep(1, 2))

        with pytest.raises(ProjectClosedError):
            machine.apply_update(project_id, CompleteSubstep(1, 1))

    def test_locked_phase_rejects_completion(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        with pytest.raises(PhaseLockedError):
            machine.apply_update(project_id, CompleteSubstep(1, 1))

    def test_archived_project_rejects_completion(self, machine, store, two_phase_project):
        two_phase_project.archive()
        project_id = store(two_phase_project)
        with pytest.raises(ProjectClosedError):
            machine.apply_update(project_id, CompleteSubstep(0, 1))

    def test_paused_project_still_accepts_progress(self, machine, store, two_phase_project):
        two_phase_project.pause()
        project_id = store(two_phase_project)
        project, _ = machine.apply_update(project_id, CompleteSubstep(0, 1))
        assert project.status == ProjectStatus.PAUSED
        assert project.cursor == Cursor(0, 2)

    def test_completion_is_recorded_in_ledger(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        project, summary = machine.apply_update(project_id, CompleteSubstep(0, 1))
        record = project.completed_substeps[0]
        assert (record.phase_number, record.substep_number) == (0, 1)
        assert record.completed_at == project.phases[0].substeps[0].completed_at
        assert summary.ledger_added is True

    def test_auto_advance_into_unexpanded_phase_awaits_expansion(
        self, machine, store, make_phase, make_project
    ):
        project_id = store(make_project([make_phase(0, 1, locked=False), make_phase(1)]))

        project, _ = machine.apply_update(project_id, CompleteSubstep(0, 1))

        assert project.cursor == Cursor(1, None)
        assert project.phases[1].locked is False

    def test_missing_project(self, machine):
        with pytest.raises(ProjectNotFoundError):
            machine.apply_update("missing", CompleteSubstep(0, 1))


class TestCommandValidation:

    @pytest.mark.parametrize("phase,substep", [(-1, 1), (0, 0), (0, -2), (True, 1)])
    def test_invalid_numbers_rejected(self, phase, substep):
        with pytest.raises(ValidationError):
            CompleteSubstep(phase, substep)

    def test_unlock_rejects_negative_phase(self):
        with pytest.raises(ValidationError):
            UnlockPhase(-1)


class TestAdvance:

    def test_sequential_moves_one_substep(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        project, summary = machine.apply_update(project_id, AdvanceSubstepSequential())
        assert project.cursor == Cursor(0, 2)
        assert summary.advanced is True

    def test_sequential_past_incomplete_phase_parks_past_end(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        machine.apply_update(project_id, AdvanceSubstepSequential())
        project, _ = machine.apply_update(project_id, AdvanceSubstepSequential())
        # Phase not complete, so no phase transition happens
        assert project.cursor == Cursor(0, 3)

        project, summary = machine.apply_update(project_id, AdvanceSubstepSequential())
        assert project.cursor == Cursor(0, 3)
        assert summary.advanced is False

    def test_sequential_is_noop_while_awaiting_expansion(self, machine, store, make_phase, make_project):
        project_id = store(make_project([make_phase(0, locked=False)]))
        project, summary = machine.apply_update(project_id, AdvanceSubstepSequential())
        assert project.cursor == Cursor(0, None)
        assert summary.advanced is False

    def test_next_incomplete_skips_completed_substeps(self, machine, store, make_phase, make_project):
        project_id = store(make_project([make_phase(0, 3, locked=False, completed=(2,)), make_phase(1, 2)]))
        project, _ = machine.apply_update(project_id, AdvanceSubstepToNextIncomplete())
        assert project.cursor == Cursor(0, 3)

    def test_next_incomplete_stays_when_only_earlier_work_remains(
        self, machine, store, make_phase, make_project
    ):
        phases = [make_phase(0, 3, locked=False, completed=(2, 3)), make_phase(1, 2)]
        project_id = store(make_project(phases, cursor=Cursor(0, 2)))
        project, summary = machine.apply_update(project_id, AdvanceSubstepToNextIncomplete())
        assert project.cursor == Cursor(0, 2)
        assert summary.advanced is False

    def test_next_incomplete_on_finished_phase_moves_to_next_phase(
        self, machine, store, make_phase, make_project
    ):
        phases = [make_phase(0, 3, locked=False, completed=(2, 3)), make_phase(1, 2)]
        project_id = store(make_project(phases))
        machine.apply_update(project_id, CompleteSubstep(0, 1))

        project, _ = machine.apply_update(project_id, AdvanceSubstepToNextIncomplete())

        assert project.cursor == Cursor(1, 1)

    def test_advance_phase_requires_unlocked_next_phase(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        with pytest.raises(PhaseLockedError):
            machine.apply_update(project_id, AdvancePhase())

        machine.apply_update(project_id, UnlockPhase(1))
        project, _ = machine.apply_update(project_id, AdvancePhase())
        assert project.cursor == Cursor(1, 1)

    def test_advance_phase_beyond_last_phase(self, machine, store, final_phase_project):
        project_id = store(final_phase_project)
        with pytest.raises(TargetNotFoundError):
            machine.apply_update(project_id, AdvancePhase())

    def test_advance_phase_into_unexpanded_phase(self, machine, store, make_phase, make_project):
        project_id = store(make_project([make_phase(0, 2, locked=False), make_phase(1, locked=False)]))
        project, _ = machine.apply_update(project_id, AdvancePhase())
        assert project.cursor == Cursor(1, None)

    def test_advance_rejected_on_closed_project(self, machine, store, two_phase_project):
        two_phase_project.archive()
        project_id = store(two_phase_project)
        with pytest.raises(ProjectClosedError):
            machine.apply_update(project_id, AdvanceSubstepSequential())


class TestUnlockAndLedger:

    def test_unlock_phase(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        project, summary = machine.apply_update(project_id, UnlockPhase(1))
        assert project.phases[1].locked is False
        assert summary.phases_unlocked == [1]

    def test_unlock_unknown_phase(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        with pytest.raises(TargetNotFoundError):
            machine.apply_update(project_id, UnlockPhase(5))

    def test_unlock_allowed_on_archived_project(self, machine, store, two_phase_project):
        two_phase_project.archive()
        project_id = store(two_phase_project)
        project, _ = machine.apply_update(project_id, UnlockPhase(1))
        assert project.phases[1].locked is False

    def test_add_completion_result_is_idempotent(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)

        project, first = machine.apply_update(project_id, AddCompletionResult(0, 1))
        project, second = machine.apply_update(project_id, AddCompletionResult(0, 1))

        assert len(project.completed_substeps) == 1
        assert first.ledger_added is True
        assert second.ledger_added is False
        # The ledger does not move the cursor or complete substeps
        assert project.cursor == Cursor(0, 1)
        assert project.phases[0].substeps[0].completed is False

    @pytest.mark.parametrize("phase_number, substep_number, target", [
        (99, 1, "phase"),
        (0, 42, "substep"),
    ])
    def test_add_completion_result_rejects_missing_target(
        self, machine, repository, store, two_phase_project, phase_number, substep_number, target
    ):
        project_id = store(two_phase_project)
        version = repository.load(project_id).version

        with pytest.raises(TargetNotFoundError) as exc_info:
            machine.apply_update(project_id, AddCompletionResult(phase_number, substep_number))

        assert exc_info.value.target == target
        stored = repository.load(project_id)
        assert stored.version == version
        assert stored.completed_substeps == []


class TestExpandPhase:

    def test_expand_moves_awaiting_cursor_to_first_substep(
        self, machine, store, make_phase, make_project, make_substeps
    ):
        project_id = store(make_project([make_phase(0, locked=False), make_phase(1)]))

        project, summary = machine.apply_update(project_id, ExpandPhase(0, tuple(make_substeps(3))))

        assert project.cursor == Cursor(0, 1)
        assert project.phases[0].expanded is True
        assert summary.phase_expanded == 0
        assert "Expanded P0" in summary.describe()

    def test_expand_locked_phase_keeps_lock(self, machine, store, make_phase, make_project, make_substeps):
        project_id = store(make_project([make_phase(0, 2, locked=False), make_phase(1)]))

        project, _ = machine.apply_update(project_id, ExpandPhase(1, tuple(make_substeps(2))))

        assert project.phases[1].locked is True
        assert project.phases[1].last_substep_number == 2
        assert project.cursor == Cursor(0, 1)

    def test_expand_twice_rejected(self, machine, store, two_phase_project, make_substeps):
        project_id = store(two_phase_project)
        with pytest.raises(PhaseAlreadyExpandedError):
            machine.apply_update(project_id, ExpandPhase(0, tuple(make_substeps(2))))

    def test_expand_with_no_substeps_rejected(self, machine, store, make_phase, make_project):
        project_id = store(make_project([make_phase(0, locked=False)]))
        with pytest.raises(ValidationError):
            machine.apply_update(project_id, ExpandPhase(0, ()))


class TestInvariants:

    def test_updated_at_is_monotonic(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        previous = two_phase_project.updated_at
        for command in (CompleteSubstep(0, 1), UnlockPhase(1), AddCompletionResult(0, 1), CompleteSubstep(0, 2)):
            project, _ = machine.apply_update(project_id, command)
            assert project.updated_at >= previous
            previous = project.updated_at

    def test_version_increments_per_update(self, machine, repository, store, two_phase_project):
        project_id = store(two_phase_project)
        start = repository.load(project_id).version
        machine.apply_update(project_id, CompleteSubstep(0, 1))
        machine.apply_update(project_id, CompleteSubstep(0, 2))
        assert repository.load(project_id).version == start + 2

    def test_inconsistent_snapshot_is_rejected_not_healed(self, machine, repository, store, two_phase_project):
        phase = two_phase_project.phases[0]
        phase.completed = True
        phase.completed_at = two_phase_project.updated_at
        project_id = store(two_phase_project)
        version = repository.load(project_id).version

        with pytest.raises(InvalidProjectStateError) as exc_info:
            machine.apply_update(project_id, UnlockPhase(1))

        assert any("P0" in v for v in exc_info.value.violations)
        assert repository.load(project_id).version == version

    def test_concurrent_writer_detected(self, two_phase_project):
        class InterferingRepository(InMemoryProjectRepository):
            """Saves an unrelated copy right after the first load."""

            interfered = False

            def load(self, project_id):
                project = super().load(project_id)
                if not self.interfered:
                    self.interfered = True
                    self.save(project_id, super().load(project_id))
                return project

        repository = InterferingRepository()
        repository.save(two_phase_project.id, two_phase_project)
        machine = ProgressStateMachine(repository)

        with pytest.raises(ConcurrentUpdateError):
            machine.apply_update(two_phase_project.id, CompleteSubstep(0, 1))

        assert repository.load(two_phase_project.id).phases[0].substeps[0].completed is False

    def test_parallel_updates_are_serialized(self, machine, repository, store, make_phase, make_project):
        project_id = store(make_project([make_phase(0, 8, locked=False), make_phase(1, 2)]))
        errors = []
        barrier = threading.Barrier(4)

        def worker(numbers):
            barrier.wait()
            for number in numbers:
                try:
                    machine.apply_update(project_id, CompleteSubstep(0, number))
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=worker, args=((n, n + 4),)) for n in range(1, 5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        project = repository.load(project_id)
        assert errors == []
        assert project.phases[0].completed is True
        assert len(project.completed_substeps) == 8
        assert project.phases[1].locked is False


class TestNotification:

    def test_listener_receives_summary_and_project(self, machine, store, two_phase_project):
        received = []
        machine.on_state_change(lambda summary, project: received.append((summary, project)))
        project_id = store(two_phase_project)

        machine.apply_update(project_id, CompleteSubstep(0, 1))

        summary, project = received[0]
        assert summary.project_id == project_id
        assert summary.previous_position == Cursor(0, 1)
        assert summary.new_position == Cursor(0, 2)
        assert project.cursor == Cursor(0, 2)

    def test_failing_listener_does_not_break_update(self, machine, repository, store, two_phase_project):
        def broken(summary, project):
            raise RuntimeError("listener down")

        machine.on_state_change(broken)
        project_id = store(two_phase_project)

        project, _ = machine.apply_update(project_id, CompleteSubstep(0, 1))

        assert repository.load(project_id).cursor == Cursor(0, 2)

    def test_no_notification_on_failure(self, machine, store, two_phase_project):
        received = []
        machine.on_state_change(lambda summary, project: received.append(summary))
        project_id = store(two_phase_project)

        with pytest.raises(PhaseLockedError):
            machine.apply_update(project_id, CompleteSubstep(1, 1))

        assert received == []

    def test_summary_to_dict(self, two_phase_project):
        after = copy.deepcopy(two_phase_project)
        after.cursor = Cursor(0, 2)
        data = detect_changes(two_phase_project, after, CompleteSubstep(0, 1)).to_dict()

        assert data["previous_position"] == {"phase": 0, "substep": 1}
        assert data["new_position"] == {"phase": 0, "substep": 2}
        assert data["advanced"] is True
        assert data["substep_completed"] == {"phase": 0, "substep": 1}
        assert data["command"] == "CompleteSubstep"
        assert data["summary"] == "Completed P0.1 | Now at P0.2"


class TestCommandUnion:

    @pytest.mark.parametrize("command", [
        CompleteSubstep(0, 1),
        AdvanceSubstepSequential(),
        AdvanceSubstepToNextIncomplete(),
        AdvancePhase(),
        UnlockPhase(1),
        AddCompletionResult(0, 1),
        ExpandPhase(1),
    ])
    def test_every_command_is_a_command(self, command):
        assert isinstance(command, Command)

    def test_unknown_command_rejected(self, machine, store, two_phase_project):
        project_id = store(two_phase_project)
        with pytest.raises(TypeError):
            machine.apply_update(project_id, object())
