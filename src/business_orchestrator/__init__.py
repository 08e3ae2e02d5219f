"""Multi-tenant business orchestration: detect the tenant, load its plugins, merge its config."""

from .config import OrchestratorConfig, get_config, load_config
from .detection import ContextDetector, RuntimeSignals
from .errors import OrchestrationError, OrchestratorError
from .orchestrator import OrchestrationResult, OrchestratorFacade, OrchestratorState

__version__ = "0.1.0"

__all__ = [
	"OrchestratorConfig",
	"get_config",
	"load_config",
	"ContextDetector",
	"RuntimeSignals",
	"OrchestratorFacade",
	"OrchestrationResult",
	"OrchestratorState",
	"OrchestrationError",
	"OrchestratorError",
]
