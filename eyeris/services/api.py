"""Request/response surface consumed by HTTP front ends and the CLI."""

from __future__ import annotations

import base64
import logging
from typing import Any

from ..config import AppConfig
from ..models.base import AnalysisRequest, OutputFormat
from ..utils.deadlines import RequestContext
from .orchestrator import AnalysisOutcome, Orchestrator

logger = logging.getLogger(__name__)


def outcome_to_payload(outcome: AnalysisOutcome) -> dict[str, Any]:
    """Render an outcome as the JSON envelope returned to callers."""
    if not outcome.ok or outcome.result is None:
        payload: dict[str, Any] = {"success": False, "message": outcome.message}
        if outcome.error_kind is not None:
            payload["error"] = outcome.error_kind.value
        return payload

    result = outcome.result
    data: dict[str, Any] = {
        "analysis": result.analysis,
        "token_usage": result.token_usage.as_dict(),
    }
    if result.thumbnail is not None:
        data["thumbnail"] = base64.b64encode(result.thumbnail).decode("ascii")
    return {"success": True, "message": outcome.message, "data": data}


class AnalysisService:
    """Front-end facade: ``analyze`` and ``health`` over a shared orchestrator."""

    def __init__(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator

    @classmethod
    def from_config(cls, config: AppConfig) -> AnalysisService:
        return cls(Orchestrator(config))

    def analyze(
        self,
        image_bytes: bytes,
        format: str = OutputFormat.JSON.value,
        provider: str | None = None,
        model: str | None = None,
        *,
        context: RequestContext | None = None,
    ) -> tuple[int, dict[str, Any]]:
        """Analyze one uploaded image and return ``(status_code, envelope)``."""
        request = AnalysisRequest(
            image=bytes(image_bytes or b""),
            format=format,
            provider=provider or None,
            model=model or None,
        )
        logger.debug(
            "Received analyze request: %d bytes, format=%s, provider=%s, model=%s",
            len(request.image),
            format,
            provider,
            model,
        )
        outcome = self.orchestrator.run(request, context)
        return outcome.status_code, outcome_to_payload(outcome)

    def health(self) -> dict[str, bool]:
        return {"healthy": True}

    def close(self) -> None:
        self.orchestrator.close()

    def __enter__(self) -> AnalysisService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
