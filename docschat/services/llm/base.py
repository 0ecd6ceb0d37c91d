from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Generator, Iterable

VALID_ROLES = ("user", "assistant")


class LLMProviderError(RuntimeError):
    pass


class BackendUnavailable(LLMProviderError):
    """The backend could not be reached or refused the request."""


class MalformedResponse(LLMProviderError):
    """The backend answered with a payload we could not parse."""


class StreamInterrupted(LLMProviderError):
    """The stream ended abnormally after it had started."""


class StreamTimeout(StreamInterrupted):
    """The stream did not finish within the allotted time."""


def validate_messages(messages: Iterable[dict]) -> list[dict]:
    """Return messages as a list of plain {role, content} dicts.

    Raises ValueError for an empty sequence or an unknown role.
    """
    result: list[dict] = []
    for message in messages:
        role = message.get("role")
        if role not in VALID_ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")
        result.append({"role": role, "content": str(message.get("content", ""))})
    if not result:
        raise ValueError("At least one message is required")
    return result


class LLMProvider(ABC):
    @abstractmethod
    def chat_stream(self, messages: list[dict]) -> Generator[str, None, None]:
        """Stream a chat completion, yielding text deltas as they arrive."""
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> None:
        """Raise BackendUnavailable if the backend cannot be reached."""
        raise NotImplementedError


class BaseLLMProvider(LLMProvider):
    """Base implementation with message validation and non-streaming helpers.

    Subclasses only need to implement _call_api_stream() and ping() for their
    specific API client.
    """

    def __init__(self, logger_name: str = "docschat.llm") -> None:
        self._logger = logging.getLogger(logger_name)

    @abstractmethod
    def _call_api_stream(
        self,
        messages: list[dict],
        temperature: float | None = None,
        timeout: float = 120,
    ) -> Generator[str, None, None]:
        """Make a streaming API call, yielding tokens as they arrive.

        Args:
            messages: Validated role-tagged messages
            temperature: Optional sampling temperature
            timeout: Connect/read timeout in seconds

        Yields:
            Token strings as they arrive from the API
        """
        raise NotImplementedError

    def chat_stream(self, messages: list[dict]) -> Generator[str, None, None]:
        validated = validate_messages(messages)
        yield from self._call_api_stream(validated)

    def chat(self, messages: list[dict]) -> str:
        """Non-streaming version of chat_stream for simple use cases."""
        return "".join(self.chat_stream(messages))
