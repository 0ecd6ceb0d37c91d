from __future__ import annotations

import json
import logging
from typing import Generator

import requests

from docschat.services.llm.base import (
    BackendUnavailable,
    BaseLLMProvider,
    MalformedResponse,
    StreamInterrupted,
)

_logger = logging.getLogger("docschat.llm.ollama")

DEFAULT_BASE_URL = "http://127.0.0.1:11434"
DEFAULT_MODEL = "gemma2:2b"


class OllamaProvider(BaseLLMProvider):
    """LLM provider for local Ollama models."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        *,
        timeout: float = 120,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(logger_name="docschat.llm.ollama")
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def model(self) -> str:
        return self._model

    def ping(self) -> None:
        try:
            resp = self._session.get(f"{self._base_url}/api/tags", timeout=3)
        except requests.RequestException as exc:
            raise BackendUnavailable(f"Failed to reach Ollama at {self._base_url}") from exc
        if resp.status_code != 200:
            raise BackendUnavailable(f"Ollama error: {resp.status_code}")
        _logger.info("Ollama is reachable at %s", self._base_url)

    def _call_api_stream(
        self,
        messages: list[dict],
        temperature: float | None = None,
        timeout: float | None = None,
    ) -> Generator[str, None, None]:
        """Make a streaming call to the Ollama chat API, yielding tokens as they arrive."""
        request_body = {
            "model": self._model,
            "messages": messages,
            "stream": True,
        }
        if temperature is not None:
            request_body["options"] = {"temperature": temperature}

        try:
            response = self._session.post(
                f"{self._base_url}/api/chat",
                json=request_body,
                timeout=timeout or self._timeout,
                stream=True,
            )
        except requests.RequestException as exc:
            raise BackendUnavailable("Failed to reach Ollama") from exc

        # Closing the generator early (GeneratorExit) lands in the finally
        # block, which releases the connection.
        try:
            if response.status_code != 200:
                raise BackendUnavailable(f"Ollama error: {response.status_code}")

            token_count = 0
            done = False
            try:
                for line in response.iter_lines():
                    if not line:
                        continue
                    token, done = _parse_chunk(line)
                    if token:
                        token_count += 1
                        yield token
                    if done:
                        break
            except requests.RequestException as exc:
                raise StreamInterrupted(
                    f"Ollama stream interrupted after {token_count} tokens"
                ) from exc

            if not done:
                raise StreamInterrupted(
                    f"Ollama stream ended without completion after {token_count} tokens"
                )
            _logger.debug("stream_done model=%s tokens=%d", self._model, token_count)
        finally:
            response.close()


def _parse_chunk(line: bytes | str) -> tuple[str, bool]:
    """Parse one NDJSON chunk from /api/chat into (token, done)."""
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedResponse(f"Non-JSON chunk from Ollama: {line[:200]!r}") from exc
    if not isinstance(data, dict):
        raise MalformedResponse(f"Unexpected chunk type: {type(data).__name__}")
    if data.get("error"):
        raise StreamInterrupted(f"Ollama reported an error: {data['error']}")

    message = data.get("message")
    if message is None:
        token = ""
    elif isinstance(message, dict):
        token = message.get("content") or ""
        if not isinstance(token, str):
            raise MalformedResponse("Chunk message content is not a string")
    else:
        raise MalformedResponse("Chunk message is not an object")
    return token, bool(data.get("done"))
