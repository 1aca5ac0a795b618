"""Core service driving one analysis request from raw bytes to a normalized result."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from ..config import AppConfig
from ..errors import (
    AnalysisError,
    ErrorKind,
    InternalError,
    InvalidRequest,
    MalformedAnalysis,
    PayloadTooLarge,
)
from ..models.base import (
    AnalysisRequest,
    AnalysisResult,
    PreparedImage,
    PromptPayload,
    ProviderAdapter,
    ProviderReply,
)
from ..prompts import PromptSpec, build_prompt, parse_format
from ..providers.registry import ProviderRegistry
from ..ratelimit import RateLimiter
from ..utils.deadlines import RequestContext
from ..utils.imaging import ImagePreprocessor
from ..utils.text import strip_code_fences

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProgressCallback = Callable[[int, int, "AnalysisOutcome"], None]

# Longest single wait on a worker future before re-checking cancellation.
_FUTURE_POLL_SECONDS = 0.1


class RequestState(str, Enum):
    """Lifecycle of a single analysis request."""

    RECEIVED = "received"
    VALIDATING = "validating"
    PREPROCESSING = "preprocessing"
    PROMPTING = "prompting"
    AWAITING_PERMIT = "awaiting_permit"
    CALLING = "calling"
    PARSING_RESPONSE = "parsing_response"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class AnalysisOutcome:
    """Tagged result of one request: either a result or a failure kind and message."""

    state: RequestState
    result: AnalysisResult | None = None
    error_kind: ErrorKind | None = None
    message: str = ""
    status_code: int = 200
    failed_in: RequestState | None = None
    trail: list[RequestState] = field(default_factory=list)
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state is RequestState.DONE


class _Tracker:
    def __init__(self) -> None:
        self.state = RequestState.RECEIVED
        self.trail = [RequestState.RECEIVED]

    def enter(self, state: RequestState) -> None:
        logger.debug("Request %s -> %s", self.state.value, state.value)
        self.state = state
        self.trail.append(state)


class Orchestrator:
    """Validates, prepares, rate-limits, calls and parses image analysis requests."""

    def __init__(
        self,
        config: AppConfig,
        *,
        registry: ProviderRegistry | None = None,
        limiter: RateLimiter | None = None,
        preprocessor: ImagePreprocessor | None = None,
    ) -> None:
        self.config = config
        self.registry = registry or ProviderRegistry.from_config(config)
        self.limiter = limiter or RateLimiter.from_config(config)
        self.preprocessor = preprocessor or ImagePreprocessor.from_config(config)
        self._executor = ThreadPoolExecutor(
            max_workers=config.request_workers,
            thread_name_prefix="eyeris-request",
        )

    # ----- Public API -------------------------------------------------------

    def run(self, request: AnalysisRequest, context: RequestContext | None = None) -> AnalysisOutcome:
        """Process ``request`` to completion. Never raises; failures become outcomes."""
        context = context or RequestContext(self.config.request_timeout)
        tracker = _Tracker()
        started = time.monotonic()
        try:
            result = self._process(request, context, tracker)
        except AnalysisError as exc:
            return self._failed(tracker, exc, started)
        except Exception as exc:
            logger.exception("Unexpected failure while %s", tracker.state.value)
            return self._failed(tracker, InternalError(f"Internal error: {exc}"), started)

        tracker.enter(RequestState.DONE)
        duration = time.monotonic() - started
        logger.info(
            "Analysis via %s/%s completed in %.2fs (%d attempt(s), %d tokens)",
            result.provider,
            result.model,
            duration,
            result.attempts,
            result.token_usage.total_tokens,
        )
        return AnalysisOutcome(
            state=RequestState.DONE,
            result=result,
            message="Analysis completed successfully",
            trail=tracker.trail,
            duration=duration,
        )

    def submit(
        self, request: AnalysisRequest, context: RequestContext | None = None
    ) -> Future[AnalysisOutcome]:
        """Run ``request`` on the request pool so it proceeds independently of others."""
        return self._executor.submit(self.run, request, context)

    def analyze_many(
        self,
        requests: Sequence[AnalysisRequest],
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> list[AnalysisOutcome]:
        """Run a batch of requests concurrently and return outcomes in input order."""
        if not requests:
            return []

        total = len(requests)
        outcomes: list[AnalysisOutcome | None] = [None] * total
        futures = {self.submit(request): index for index, request in enumerate(requests)}
        for done, future in enumerate(as_completed(futures), start=1):
            outcome = future.result()
            outcomes[futures[future]] = outcome
            if progress_callback:
                progress_callback(done, total, outcome)
        return [outcome for outcome in outcomes if outcome is not None]

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.preprocessor.shutdown()
        self.registry.close()

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ----- Pipeline stages --------------------------------------------------

    def _process(
        self, request: AnalysisRequest, context: RequestContext, tracker: _Tracker
    ) -> AnalysisResult:
        tracker.enter(RequestState.VALIDATING)
        provider_name, model, spec = self._validate(request)
        adapter = self.registry.get(provider_name)
        context.check("validation")

        tracker.enter(RequestState.PREPROCESSING)
        prepared = self._await(self.preprocessor.submit(request.image), context, "preprocessing")
        thumbnail_future: Future[bytes] | None = None
        if self.config.generate_thumbnail:
            thumbnail_future = self.preprocessor.submit_thumbnail(
                request.image,
                size=self.config.thumbnail_size,
                brightness=self.config.thumbnail_brightness,
            )

        try:
            tracker.enter(RequestState.PROMPTING)
            prompt = build_prompt(spec)

            reply, attempts = self._call_with_retry(
                adapter, provider_name, model, prepared, prompt, context, tracker
            )
            # A reply that arrives after cancellation is discarded.
            context.check("response parsing")

            tracker.enter(RequestState.PARSING_RESPONSE)
            analysis = self._parse_response(reply.text, prompt, provider_name)
        except Exception:
            if thumbnail_future is not None:
                thumbnail_future.cancel()
            raise

        return AnalysisResult(
            analysis=analysis,
            token_usage=reply.usage,
            format=prompt.format,
            provider=provider_name,
            model=model,
            attempts=attempts,
            thumbnail=self._collect_thumbnail(thumbnail_future, context),
            extras={
                "width": prepared.width,
                "height": prepared.height,
                "original_bytes": prepared.original_size,
                "prepared_bytes": prepared.size,
                "jpeg_quality": prepared.quality,
            },
        )

    def _validate(self, request: AnalysisRequest) -> tuple[str, str, PromptSpec]:
        if not isinstance(request.image, (bytes, bytearray, memoryview)) or not request.image:
            raise InvalidRequest("No image provided.")
        if len(request.image) > self.config.max_upload_bytes:
            raise PayloadTooLarge(
                f"Image is {len(request.image)} bytes; "
                f"the limit is {self.config.max_upload_bytes} bytes."
            )
        for field_name in ("provider", "model"):
            value = getattr(request, field_name)
            if value is not None and not isinstance(value, str):
                raise InvalidRequest(
                    f"Field '{field_name}' must be a string, got {type(value).__name__}."
                )
        spec = parse_format(request.format)
        provider_name = (request.provider or self.config.default_provider).strip().lower()
        model = self.registry.resolve_model(provider_name, request.model)
        return provider_name, model, spec

    def _call_with_retry(
        self,
        adapter: ProviderAdapter,
        provider_name: str,
        model: str,
        prepared: PreparedImage,
        prompt: PromptPayload,
        context: RequestContext,
        tracker: _Tracker,
    ) -> tuple[ProviderReply, int]:
        attempts = 0
        while True:
            attempts += 1
            try:
                reply = self._call_once(
                    adapter, provider_name, model, prepared, prompt, context, tracker
                )
                return reply, attempts
            except AnalysisError as exc:
                if not exc.kind.is_transient or attempts > self.config.max_retries:
                    raise
                logger.info(
                    "Provider %s failed with %s (%s); retrying once",
                    provider_name,
                    exc.kind.value,
                    exc.message,
                )
                context.sleep(self.config.retry_delay)

    def _call_once(
        self,
        adapter: ProviderAdapter,
        provider_name: str,
        model: str,
        prepared: PreparedImage,
        prompt: PromptPayload,
        context: RequestContext,
        tracker: _Tracker,
    ) -> ProviderReply:
        tracker.enter(RequestState.AWAITING_PERMIT)
        context.check("permit acquisition")
        permit = self.limiter.acquire(
            provider_name,
            timeout=context.bound(self.config.permit_timeout),
            cancel=context.cancel_event,
        )
        with permit:
            tracker.enter(RequestState.CALLING)
            context.check("provider call")
            timeout = context.bound(self.config.provider(provider_name).timeout)
            return adapter.analyze(prepared, prompt, model, timeout=timeout)

    def _parse_response(self, text: str, prompt: PromptPayload, provider_name: str) -> str:
        if not prompt.expects_json:
            return text
        cleaned = strip_code_fences(text)
        try:
            json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise MalformedAnalysis(
                f"{provider_name} returned text that is not valid JSON: {exc.msg} "
                f"at position {exc.pos}."
            ) from exc
        return cleaned

    def _collect_thumbnail(
        self, future: Future[bytes] | None, context: RequestContext
    ) -> bytes | None:
        if future is None:
            return None
        try:
            return self._await(future, context, "thumbnail generation")
        except AnalysisError as exc:
            logger.warning("Thumbnail generation failed: %s", exc.message)
            return None

    @staticmethod
    def _await(future: Future[T], context: RequestContext, stage: str) -> T:
        while True:
            try:
                context.check(stage)
            except AnalysisError:
                future.cancel()
                raise
            wait_for = context.bound(_FUTURE_POLL_SECONDS)
            try:
                return future.result(timeout=wait_for)
            except FutureTimeout:
                continue

    def _failed(
        self, tracker: _Tracker, error: AnalysisError, started: float
    ) -> AnalysisOutcome:
        failed_in = tracker.state
        tracker.enter(RequestState.FAILED)
        logger.warning(
            "Analysis failed while %s: %s (%s)", failed_in.value, error.message, error.kind.value
        )
        return AnalysisOutcome(
            state=RequestState.FAILED,
            error_kind=error.kind,
            message=error.message,
            status_code=error.status_code,
            failed_in=failed_in,
            trail=tracker.trail,
            duration=time.monotonic() - started,
        )
