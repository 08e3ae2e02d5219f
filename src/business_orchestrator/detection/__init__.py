"""Detection module - Resolve runtime signals to a business context."""

from .detector import ContextDetector, CustomRule
from .models import UNKNOWN_CONTEXT, DetectionMethod, DetectionResult, RuntimeSignals
from .profiles import BusinessProfile, default_profiles, load_profiles

__all__ = [
	"ContextDetector",
	"CustomRule",
	"DetectionMethod",
	"DetectionResult",
	"RuntimeSignals",
	"UNKNOWN_CONTEXT",
	"BusinessProfile",
	"default_profiles",
	"load_profiles",
]
