"""Service layer coordinating image analysis requests."""

from .api import AnalysisService, outcome_to_payload
from .orchestrator import AnalysisOutcome, Orchestrator, RequestState

__all__ = [
    "AnalysisOutcome",
    "AnalysisService",
    "Orchestrator",
    "RequestState",
    "outcome_to_payload",
]
