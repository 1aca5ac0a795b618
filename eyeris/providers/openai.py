"""Adapter for OpenAI-style chat completion APIs with image input."""

from __future__ import annotations

import logging
from typing import Any

from requests import Session

from ..config import ProviderSettings
from ..errors import ProviderError
from ..models.base import PreparedImage, PromptPayload, ProviderInfo, ProviderReply, TokenUsage
from .transport import HttpTransport, data_uri

logger = logging.getLogger(__name__)


class OpenAIAdapter:
    """Vision analysis through ``POST /chat/completions``."""

    adapter_name = "openai"

    def __init__(
        self,
        name: str,
        settings: ProviderSettings,
        *,
        session: Session | None = None,
    ) -> None:
        self._settings = settings
        self._api_key = settings.resolved_api_key()
        self._transport = HttpTransport(
            backend=name,
            base_url=settings.base_url,
            api_key=self._api_key,
            timeout=settings.timeout,
            session=session,
        )
        self._info = ProviderInfo(
            name=name,
            adapter=self.adapter_name,
            display_name="OpenAI Vision",
            default_model=settings.default_model,
            base_url=settings.base_url,
            tags=("remote", "openai", "vision", "http"),
        )

    def info(self) -> ProviderInfo:
        return self._info

    def build_payload(self, image: PreparedImage, prompt: PromptPayload, model: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt.text},
                        {"type": "image_url", "image_url": {"url": data_uri(image)}},
                    ],
                }
            ],
            "max_tokens": self._settings.max_tokens,
            "temperature": self._settings.temperature,
        }
        if prompt.expects_json:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def analyze(
        self,
        image: PreparedImage,
        prompt: PromptPayload,
        model: str,
        *,
        timeout: float | None = None,
    ) -> ProviderReply:
        if not self._api_key:
            raise ProviderError(
                f"No API key configured for provider '{self._info.name}'.",
                status=401,
            )
        response = self._transport.post(
            "chat/completions",
            self.build_payload(image, prompt, model),
            timeout=timeout,
        )
        data = HttpTransport.json_body(response, backend=self._info.name)
        return self.parse_reply(data)

    def parse_reply(self, data: Any) -> ProviderReply:
        if not isinstance(data, dict):
            raise ProviderError(f"{self._info.name} backend returned an unexpected payload.")
        if "error" in data:
            raise ProviderError(f"{self._info.name} backend error: {data['error']}")
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderError(f"{self._info.name} backend returned no choices.")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ProviderError(f"{self._info.name} backend returned a choice without text.")

        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        token_usage = TokenUsage.from_counts(
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        )
        logger.info(
            "Token usage for %s request: prompt=%d completion=%d total=%d",
            self._info.name,
            token_usage.prompt_tokens,
            token_usage.completion_tokens,
            token_usage.total_tokens,
        )
        return ProviderReply(text=content, usage=token_usage)

    def close(self) -> None:
        self._transport.close()
