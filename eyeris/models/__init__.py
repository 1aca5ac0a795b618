"""Data types and interfaces for the analysis pipeline."""

from .base import (
    AnalysisRequest,
    AnalysisResult,
    OutputFormat,
    PreparedImage,
    PromptPayload,
    ProviderAdapter,
    ProviderInfo,
    ProviderReply,
    TokenUsage,
)

__all__ = [
    "AnalysisRequest",
    "AnalysisResult",
    "OutputFormat",
    "PreparedImage",
    "PromptPayload",
    "ProviderAdapter",
    "ProviderInfo",
    "ProviderReply",
    "TokenUsage",
]
