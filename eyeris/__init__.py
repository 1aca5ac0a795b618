"""Top-level package for the eyeris image analysis service."""

from .config import AppConfig, RateLimitMode
from .models.base import AnalysisRequest, AnalysisResult, OutputFormat, TokenUsage
from .services.api import AnalysisService
from .services.orchestrator import AnalysisOutcome, Orchestrator
from .settings_store import SettingsStore

__all__ = [
    "AnalysisOutcome",
    "AnalysisRequest",
    "AnalysisResult",
    "AnalysisService",
    "AppConfig",
    "Orchestrator",
    "OutputFormat",
    "RateLimitMode",
    "SettingsStore",
    "TokenUsage",
]
