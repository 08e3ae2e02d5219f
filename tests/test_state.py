"""Tests for the orchestration state machine."""

import pytest

from business_orchestrator.errors import InvalidTransitionError
from business_orchestrator.orchestrator.state import TRANSITIONS, OrchestratorState, PipelineRun

S = OrchestratorState

HAPPY_PATH = [S.DISCOVERING, S.RESOLVING, S.LOADING, S.CONFIGURING_MERGE, S.READY]


def _run_to(run: PipelineRun, target: OrchestratorState) -> None:
	run.begin()
	for state in HAPPY_PATH:
		if run.state == target:
			return
		run.transition(state)


class TestTransitions:
	"""Legal and illegal moves."""

	def test_happy_path(self):
		run = PipelineRun()
		_run_to(run, S.READY)
		assert run.state == S.READY
		assert run.finished
		assert [t.target for t in run.transitions] == [S.DETECTING, *HAPPY_PATH]
		assert set(run.stage_timings) == {"detecting", "discovering", "resolving", "loading", "configuring_merge"}

	def test_skipping_a_stage_is_illegal(self):
		run = PipelineRun()
		run.begin()
		with pytest.raises(InvalidTransitionError):
			run.transition(S.LOADING)
		assert run.state == S.DETECTING

	def test_cannot_begin_mid_pipeline(self):
		run = PipelineRun()
		_run_to(run, S.RESOLVING)
		with pytest.raises(InvalidTransitionError):
			run.begin()

	def test_error_reachable_from_every_working_state(self):
		for stage in [S.DETECTING, *HAPPY_PATH[:-1]]:
			run = PipelineRun()
			_run_to(run, stage)
			assert run.state == stage
			failed = run.fail(RuntimeError("x"))
			assert failed == stage.value
			assert run.state == S.ERROR
			assert run.failed_stage == stage.value
			assert str(run.error) == "x"

	def test_terminal_states_only_reenter_detecting(self):
		assert TRANSITIONS[S.READY] == {S.DETECTING}
		assert TRANSITIONS[S.ERROR] == {S.DETECTING}
		run = PipelineRun()
		_run_to(run, S.READY)
		with pytest.raises(InvalidTransitionError):
			run.fail(RuntimeError("late"))


class TestCycles:
	"""Re-entering DETECTING after a finished cycle."""

	def test_restart_after_error_clears_cycle_fields(self):
		run = PipelineRun()
		run.begin()
		run.context = "cms"
		run.fail(RuntimeError("x"))

		run.begin()
		assert run.state == S.DETECTING
		assert run.context is None
		assert run.failed_stage is None
		assert run.error is None
		assert run.stage_timings == {}
		assert run.cycles == 2

	def test_summary(self):
		run = PipelineRun(label="lifecycle")
		_run_to(run, S.READY)
		summary = run.summary()
		assert summary["label"] == "lifecycle"
		assert summary["state"] == "ready"
		assert summary["cycle"] == 1
		assert summary["failed_stage"] is None
		assert summary["total_time"] >= 0
