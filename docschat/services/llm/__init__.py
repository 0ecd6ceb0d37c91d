from docschat.services.llm.base import (
    BackendUnavailable,
    LLMProvider,
    LLMProviderError,
    MalformedResponse,
    StreamInterrupted,
    StreamTimeout,
)
from docschat.services.llm.ollama_provider import OllamaProvider

__all__ = [
    "BackendUnavailable",
    "LLMProvider",
    "LLMProviderError",
    "MalformedResponse",
    "OllamaProvider",
    "StreamInterrupted",
    "StreamTimeout",
]
