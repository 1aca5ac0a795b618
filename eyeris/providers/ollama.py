"""Adapter for locally hosted Ollama vision models."""

from __future__ import annotations

import json
import logging
from typing import Any

from requests import Response, Session

from ..config import ProviderSettings
from ..errors import AnalysisError, ProviderError
from ..models.base import PreparedImage, PromptPayload, ProviderInfo, ProviderReply, TokenUsage
from .transport import HttpTransport, encode_image

logger = logging.getLogger(__name__)

_VISION_KEYWORDS = {
    "vision",
    "multimodal",
    "vl",
    "llava",
    "minicpm",
    "moondream",
    "paligemma",
    "gemma3",
    "qwen2.5vl",
    "pixtral",
    "bakllava",
    "clip",
    "image",
}


class OllamaAdapter:
    """Vision analysis through Ollama's ``POST /api/generate``."""

    adapter_name = "ollama"

    def __init__(
        self,
        name: str,
        settings: ProviderSettings,
        *,
        session: Session | None = None,
    ) -> None:
        self._settings = settings
        self._transport = HttpTransport(
            backend=name,
            base_url=settings.base_url,
            api_key=settings.resolved_api_key(),
            timeout=settings.timeout,
            session=session,
        )
        self._info = ProviderInfo(
            name=name,
            adapter=self.adapter_name,
            display_name="Ollama Vision",
            default_model=settings.default_model,
            base_url=settings.base_url,
            tags=("local", "ollama", "vision", "http"),
        )

    def info(self) -> ProviderInfo:
        return self._info

    def build_payload(self, image: PreparedImage, prompt: PromptPayload, model: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt.text,
            "images": [encode_image(image)],
            "stream": False,
            "options": {
                "temperature": self._settings.temperature,
                "num_predict": self._settings.max_tokens,
            },
        }
        if prompt.expects_json:
            payload["format"] = "json"
        return payload

    def analyze(
        self,
        image: PreparedImage,
        prompt: PromptPayload,
        model: str,
        *,
        timeout: float | None = None,
    ) -> ProviderReply:
        response = self._transport.post(
            "api/generate",
            self.build_payload(image, prompt, model),
            timeout=timeout,
        )
        return self.parse_reply(self._read_chunks(response))

    def _read_chunks(self, response: Response) -> list[dict[str, Any]]:
        # A non-streaming reply is one object; a streamed one is newline-delimited JSON.
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            return [data]

        chunks: list[dict[str, Any]] = []
        for line in (response.text or "").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping undecodable %s chunk: %r", self._info.name, line[:80])
                continue
            if isinstance(chunk, dict):
                chunks.append(chunk)
        if not chunks:
            raise ProviderError(
                f"{self._info.name} backend returned an unexpected payload.",
                status=response.status_code,
                body=response.text or "",
            )
        return chunks

    def parse_reply(self, chunks: list[dict[str, Any]]) -> ProviderReply:
        pieces: list[str] = []
        usage = TokenUsage()
        for chunk in chunks:
            if "error" in chunk:
                raise ProviderError(f"{self._info.name} backend error: {chunk['error']}")
            piece = chunk.get("response")
            if isinstance(piece, str):
                pieces.append(piece)
            if "prompt_eval_count" in chunk or "eval_count" in chunk:
                usage = TokenUsage.from_counts(
                    chunk.get("prompt_eval_count"),
                    chunk.get("eval_count"),
                )
        text = "".join(pieces)
        if not text.strip():
            raise ProviderError(f"Empty response from {self._info.name}.")
        return ProviderReply(text=text, usage=usage)

    # ----- Discovery helpers ----------------------------------------------

    def discover_models(self) -> list[str]:
        """Return installed models that appear to support image analysis."""
        try:
            models = self._fetch_model_metadata()
        except AnalysisError as exc:
            logger.info("Unable to query %s backend for models: %s", self._info.name, exc)
            return []
        return [name for name, metadata in models if self._is_vision_candidate(name, metadata)]

    def _fetch_model_metadata(self) -> list[tuple[str, dict[str, Any]]]:
        response = self._transport.get("api/tags")
        payload = HttpTransport.json_body(response, backend=self._info.name)
        models = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            return []
        results: list[tuple[str, dict[str, Any]]] = []
        for item in models:
            if not isinstance(item, dict):
                continue
            name = item.get("model") or item.get("name")
            if not isinstance(name, str):
                continue
            details = item.get("details")
            if not isinstance(details, dict):
                details = {}
            results.append((name, details))
        return results

    @staticmethod
    def _is_vision_candidate(name: str, metadata: dict[str, Any]) -> bool:
        families = metadata.get("families")
        if isinstance(families, (list, tuple)):
            lowered = " ".join(str(item).lower() for item in families)
            if any(keyword in lowered for keyword in _VISION_KEYWORDS):
                return True
        base_name = name.lower().split(":", 1)[0]
        return any(keyword in base_name for keyword in _VISION_KEYWORDS)

    def close(self) -> None:
        self._transport.close()
