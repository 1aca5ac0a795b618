"""Provider adapters translating analysis calls into backend wire formats."""

from .ollama import OllamaAdapter
from .openai import OpenAIAdapter
from .registry import ADAPTER_FACTORIES, ProviderRegistry
from .transport import HttpTransport

__all__ = [
    "ADAPTER_FACTORIES",
    "HttpTransport",
    "OllamaAdapter",
    "OpenAIAdapter",
    "ProviderRegistry",
]
