"""
Orchestration state machine.

UNINITIALIZED -> DETECTING -> DISCOVERING -> RESOLVING -> LOADING
-> CONFIGURING_MERGE -> READY. ERROR is reachable from every working state.
READY and ERROR may start a new cycle by re-entering DETECTING.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..errors import InvalidTransitionError
from ..logging_config import log_event

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
	"""Current stage of an orchestration pipeline."""
	UNINITIALIZED = "uninitialized"
	DETECTING = "detecting"
	DISCOVERING = "discovering"
	RESOLVING = "resolving"
	LOADING = "loading"
	CONFIGURING_MERGE = "configuring_merge"
	READY = "ready"
	ERROR = "error"


S = OrchestratorState

TRANSITIONS: dict[OrchestratorState, frozenset[OrchestratorState]] = {
	S.UNINITIALIZED: frozenset({S.DETECTING, S.ERROR}),
	S.DETECTING: frozenset({S.DISCOVERING, S.ERROR}),
	S.DISCOVERING: frozenset({S.RESOLVING, S.ERROR}),
	S.RESOLVING: frozenset({S.LOADING, S.ERROR}),
	S.LOADING: frozenset({S.CONFIGURING_MERGE, S.ERROR}),
	S.CONFIGURING_MERGE: frozenset({S.READY, S.ERROR}),
	S.READY: frozenset({S.DETECTING}),
	S.ERROR: frozenset({S.DETECTING}),
}

WORKING_STATES = frozenset({S.DETECTING, S.DISCOVERING, S.RESOLVING, S.LOADING, S.CONFIGURING_MERGE})
TERMINAL_STATES = frozenset({S.READY, S.ERROR})


@dataclass(frozen=True)
class StageTransition:
	"""One recorded move of the state machine."""
	source: OrchestratorState
	target: OrchestratorState
	at: str
	elapsed: float


@dataclass
class PipelineRun:
	"""
	State, transition log and per-stage timings of one pipeline.

	A run can be cycled: ``begin`` from READY or ERROR clears the per-cycle
	fields (context, timings, failure) and enters DETECTING again.
	"""
	label: str = "pipeline"
	state: OrchestratorState = OrchestratorState.UNINITIALIZED
	context: Optional[str] = None
	transitions: list[StageTransition] = field(default_factory=list)
	stage_timings: dict[str, float] = field(default_factory=dict)
	failed_stage: Optional[str] = None
	error: Optional[BaseException] = None
	cycles: int = 0
	_entered_at: float = field(default_factory=time.monotonic, repr=False)

	def can_transition(self, target: OrchestratorState) -> bool:
		return target in TRANSITIONS[self.state]

	def transition(self, target: OrchestratorState) -> None:
		"""
		Move to ``target``, timing the stage being left.

		Raises:
			InvalidTransitionError: the move is not in the transition table
		"""
		if not self.can_transition(target):
			raise InvalidTransitionError(f"Illegal transition {self.state.value} -> {target.value} ({self.label})")

		now = time.monotonic()
		elapsed = now - self._entered_at
		source = self.state
		if source in WORKING_STATES:
			self.stage_timings[source.value] = elapsed
		self.transitions.append(StageTransition(source, target, datetime.now().isoformat(), elapsed))
		self.state = target
		self._entered_at = now

		log_event(
			logger, logging.DEBUG, f"Stage transition: {source.value} -> {target.value}",
			run=self.label, context=self.context, stage_ms=round(elapsed * 1000, 3),
		)

	def begin(self) -> None:
		"""Start a new cycle at DETECTING."""
		if not self.can_transition(OrchestratorState.DETECTING):
			raise InvalidTransitionError(
				f"Cannot start a cycle while {self.state.value} ({self.label})"
			)
		self.context = None
		self.stage_timings = {}
		self.failed_stage = None
		self.error = None
		self.cycles += 1
		self.transition(OrchestratorState.DETECTING)

	def complete(self) -> None:
		self.transition(OrchestratorState.READY)

	def fail(self, cause: BaseException) -> str:
		"""Enter ERROR, recording the stage that failed. Returns that stage."""
		stage = self.state.value
		self.transition(OrchestratorState.ERROR)
		self.failed_stage = stage
		self.error = cause
		return stage

	@property
	def finished(self) -> bool:
		return self.state in TERMINAL_STATES

	@property
	def total_time(self) -> float:
		return sum(self.stage_timings.values())

	def summary(self) -> dict:
		"""Plain-dict view of the current cycle for history and reporting."""
		return {
			"label": self.label,
			"cycle": self.cycles,
			"state": self.state.value,
			"context": self.context,
			"stage_timings": dict(self.stage_timings),
			"total_time": self.total_time,
			"failed_stage": self.failed_stage,
			"error": str(self.error) if self.error else None,
			"finished_at": self.transitions[-1].at if self.transitions else None,
		}
