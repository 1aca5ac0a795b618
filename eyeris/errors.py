"""Failure taxonomy shared by every stage of the analysis pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Tag carried by every pipeline failure."""

    INVALID_REQUEST = "invalid_request"
    DECODE_ERROR = "decode_error"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    INVALID_FORMAT = "invalid_format"
    RATE_LIMITED = "rate_limited"
    PROVIDER_TIMEOUT = "provider_timeout"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_ERROR = "provider_error"
    MALFORMED_ANALYSIS = "malformed_analysis"
    CANCELLED = "cancelled"
    INTERNAL = "internal"

    @property
    def is_transient(self) -> bool:
        return self in (ErrorKind.PROVIDER_TIMEOUT, ErrorKind.PROVIDER_UNAVAILABLE)


class AnalysisError(RuntimeError):
    """Base class for failures surfaced by the analysis pipeline."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict[str, object]:
        return {"kind": self.kind.value, "message": self.message, "status_code": self.status_code}


class InvalidRequest(AnalysisError):
    """The caller supplied an unusable request."""

    kind = ErrorKind.INVALID_REQUEST
    status_code = 400


class DecodeError(AnalysisError):
    """The uploaded bytes are not a readable raster image."""

    kind = ErrorKind.DECODE_ERROR
    status_code = 422


class PayloadTooLarge(AnalysisError):
    """The image cannot be brought under the configured byte budget."""

    kind = ErrorKind.PAYLOAD_TOO_LARGE
    status_code = 413


class InvalidFormat(AnalysisError):
    """The requested output format is not supported."""

    kind = ErrorKind.INVALID_FORMAT
    status_code = 400


class RateLimited(AnalysisError):
    """No provider permit could be obtained."""

    kind = ErrorKind.RATE_LIMITED
    status_code = 429


class ProviderTimeout(AnalysisError):
    """The provider did not answer within the configured timeout."""

    kind = ErrorKind.PROVIDER_TIMEOUT
    status_code = 504


class ProviderUnavailable(AnalysisError):
    """The provider could not be reached."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE
    status_code = 502


class ProviderError(AnalysisError):
    """The provider explicitly rejected the request."""

    kind = ErrorKind.PROVIDER_ERROR
    status_code = 502

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class MalformedAnalysis(AnalysisError):
    """The provider answered, but the answer is unusable for the requested format."""

    kind = ErrorKind.MALFORMED_ANALYSIS
    status_code = 502


class RequestCancelled(AnalysisError):
    """The caller went away or the request deadline elapsed."""

    kind = ErrorKind.CANCELLED
    status_code = 499


class InternalError(AnalysisError):
    """An unexpected fault isolated to a single request."""

    kind = ErrorKind.INTERNAL
    status_code = 500
