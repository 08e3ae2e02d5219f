"""Orchestrator module - The pipeline state machine and its facade."""

from .facade import OrchestrationResult, OrchestratorFacade
from .state import OrchestratorState, PipelineRun

__all__ = [
	"OrchestratorFacade",
	"OrchestrationResult",
	"OrchestratorState",
	"PipelineRun",
]
