"""Tests for provider adapters and their HTTP transport."""

from __future__ import annotations

import json

import pytest
import requests

from eyeris.config import AppConfig
from eyeris.errors import ProviderError, ProviderTimeout, ProviderUnavailable
from eyeris.models.base import PreparedImage, TokenUsage
from eyeris.prompts import build_prompt
from eyeris.providers.ollama import OllamaAdapter
from eyeris.providers.openai import OpenAIAdapter
from eyeris.providers.transport import HttpTransport, data_uri, encode_image


class DummyResponse:
    def __init__(self, payload=None, *, status_code=200, text=None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class RecordingSession:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, object]] = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


def _image() -> PreparedImage:
    return PreparedImage(
        data=b"\xff\xd8jpeg-bytes",
        content_type="image/jpeg",
        width=4,
        height=4,
        original_size=100,
        quality=85,
    )


def _openai(session, *, api_key="secret") -> OpenAIAdapter:
    config = AppConfig(providers={"openai": {"api_key": api_key}})
    return OpenAIAdapter("openai", config.provider("openai"), session=session)


def _ollama(session) -> OllamaAdapter:
    return OllamaAdapter("ollama", AppConfig().provider("ollama"), session=session)


def test_encode_helpers():
    image = _image()
    assert data_uri(image) == f"data:image/jpeg;base64,{encode_image(image)}"


def test_transport_maps_timeout():
    transport = HttpTransport(
        backend="demo",
        base_url="http://example",
        session=RecordingSession(error=requests.exceptions.ReadTimeout("slow")),
    )
    with pytest.raises(ProviderTimeout):
        transport.post("api", {})


def test_transport_maps_connection_failure():
    transport = HttpTransport(
        backend="demo",
        base_url="http://example",
        session=RecordingSession(error=requests.exceptions.ConnectionError("refused")),
    )
    with pytest.raises(ProviderUnavailable):
        transport.get("api")


def test_transport_maps_http_errors():
    session = RecordingSession(DummyResponse(status_code=503, text="overloaded"))
    transport = HttpTransport(backend="demo", base_url="http://example/", session=session)

    with pytest.raises(ProviderError) as excinfo:
        transport.post("/v1/thing", {"a": 1}, timeout=3)

    assert excinfo.value.status == 503
    assert excinfo.value.body == "overloaded"
    assert session.calls[0]["url"] == "http://example/v1/thing"
    assert session.calls[0]["timeout"] == 3


def test_transport_sends_bearer_token():
    transport = HttpTransport(backend="demo", base_url="http://x", api_key="k")
    assert transport.headers()["Authorization"] == "Bearer k"
    assert "Authorization" not in HttpTransport(backend="demo", base_url="http://x").headers()


def test_transport_small_timeout_is_not_replaced_by_default():
    session = RecordingSession(DummyResponse({"ok": True}))
    transport = HttpTransport(backend="demo", base_url="http://x", timeout=30, session=session)

    transport.post("api", {}, timeout=0.25)

    assert session.calls[0]["timeout"] == 0.25


def test_transport_exhausted_timeout_makes_no_call():
    session = RecordingSession(DummyResponse({"ok": True}))
    transport = HttpTransport(backend="demo", base_url="http://x", timeout=30, session=session)

    with pytest.raises(ProviderTimeout):
        transport.post("api", {}, timeout=0.0)

    assert session.calls == []


def test_transport_leaves_shared_session_untouched(monkeypatch):
    session = requests.Session()
    default_headers = dict(session.headers)
    sent: list[dict] = []

    def fake_request(method, url, **kwargs):
        sent.append(kwargs)
        return DummyResponse({"ok": True})

    monkeypatch.setattr(session, "request", fake_request)
    transport = HttpTransport(backend="demo", base_url="http://x", api_key="k", session=session)

    transport.post("api", {"a": 1}, timeout=5)
    transport.get("api", timeout=5)

    assert dict(session.headers) == default_headers
    assert all(call["headers"]["Authorization"] == "Bearer k" for call in sent)


def test_default_session_refuses_cookies():
    transport = HttpTransport(backend="demo", base_url="http://x")
    policy = transport._session.cookies.get_policy()

    assert policy.allowed_domains() == ()
    assert policy.is_not_allowed("api.openai.com")
    transport.close()


def test_openai_payload_embeds_image_and_prompt():
    adapter = _openai(RecordingSession())
    payload = adapter.build_payload(_image(), build_prompt("json"), "gpt-4o")

    content = payload["messages"][0]["content"]
    assert payload["model"] == "gpt-4o"
    assert content[0]["text"] == build_prompt("json").text
    assert content[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")
    assert payload["response_format"] == {"type": "json_object"}
    assert "response_format" not in adapter.build_payload(_image(), build_prompt("list"), "gpt-4o")


def test_openai_analyze_reads_text_and_usage():
    session = RecordingSession(
        DummyResponse(
            {
                "choices": [{"message": {"content": '{"objects": []}'}}],
                "usage": {"prompt_tokens": 120, "completion_tokens": 30, "total_tokens": 150},
            }
        )
    )
    adapter = _openai(session)

    reply = adapter.analyze(_image(), build_prompt("json"), "gpt-4o-mini", timeout=7)

    assert reply.text == '{"objects": []}'
    assert reply.usage == TokenUsage(120, 30, 150)
    call = session.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert call["timeout"] == 7


def test_openai_missing_usage_is_zero_filled():
    session = RecordingSession(DummyResponse({"choices": [{"message": {"content": "hi"}}]}))
    reply = _openai(session).analyze(_image(), build_prompt("concise"), "gpt-4o-mini")
    assert reply.usage == TokenUsage()


def test_openai_without_choices_is_an_error():
    session = RecordingSession(DummyResponse({"choices": []}))
    with pytest.raises(ProviderError):
        _openai(session).analyze(_image(), build_prompt("concise"), "gpt-4o-mini")


def test_openai_without_key_makes_no_call(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    session = RecordingSession(DummyResponse({}))
    adapter = _openai(session, api_key=None)

    with pytest.raises(ProviderError) as excinfo:
        adapter.analyze(_image(), build_prompt("json"), "gpt-4o-mini")

    assert excinfo.value.status == 401
    assert session.calls == []


def test_ollama_payload_shape():
    adapter = _ollama(RecordingSession())
    payload = adapter.build_payload(_image(), build_prompt("json"), "llava")

    assert payload["model"] == "llava"
    assert payload["images"] == [encode_image(_image())]
    assert payload["stream"] is False
    assert payload["format"] == "json"
    assert "format" not in adapter.build_payload(_image(), build_prompt("detailed"), "llava")


def test_ollama_analyze_reads_usage():
    session = RecordingSession(
        DummyResponse({"response": "A red square.", "prompt_eval_count": 10, "eval_count": 5})
    )
    reply = _ollama(session).analyze(_image(), build_prompt("concise"), "moondream")

    assert reply.text == "A red square."
    assert reply.usage == TokenUsage(10, 5, 15)
    assert session.calls[0]["url"] == "http://127.0.0.1:11434/api/generate"


def test_ollama_concatenates_streamed_chunks():
    lines = [
        json.dumps({"response": "A red ", "done": False}),
        "garbage",
        json.dumps({"response": "square.", "done": True, "eval_count": 3}),
    ]
    session = RecordingSession(DummyResponse(None, text="\n".join(lines)))

    reply = _ollama(session).analyze(_image(), build_prompt("concise"), "moondream")

    assert reply.text == "A red square."
    assert reply.usage.completion_tokens == 3


def test_ollama_error_body_is_an_error():
    session = RecordingSession(DummyResponse({"error": "model not found"}))
    with pytest.raises(ProviderError):
        _ollama(session).analyze(_image(), build_prompt("concise"), "missing")


def test_ollama_empty_response_is_an_error():
    session = RecordingSession(DummyResponse({"response": "  "}))
    with pytest.raises(ProviderError):
        _ollama(session).analyze(_image(), build_prompt("concise"), "moondream")


def test_ollama_discovers_vision_models():
    session = RecordingSession(
        DummyResponse(
            {
                "models": [
                    {"model": "llava:13b", "details": {"families": ["llama", "clip"]}},
                    {"model": "llama2:7b", "details": {"families": ["llama"]}},
                    {"name": "moondream:latest"},
                    "bogus",
                ]
            }
        )
    )
    assert _ollama(session).discover_models() == ["llava:13b", "moondream:latest"]


def test_ollama_discovery_failure_returns_empty():
    session = RecordingSession(error=requests.exceptions.ConnectionError("down"))
    assert _ollama(session).discover_models() == []


def test_adapters_expose_info_and_close():
    session = RecordingSession()
    adapter = _ollama(session)
    info = adapter.info()
    assert info.name == "ollama"
    assert info.default_model == "moondream"
    adapter.close()
    assert session.closed
