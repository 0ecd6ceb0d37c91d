"""Runtime settings: config.json first, then DOCSCHAT_* environment overrides."""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from docschat.services.llm.ollama_provider import DEFAULT_BASE_URL, DEFAULT_MODEL

ENV_PREFIX = "DOCSCHAT_"

_logger = logging.getLogger("docschat.config")


class Settings(BaseModel):
    ollama_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    database_path: str = ""
    # Per-read HTTP timeout and overall bound on one completion, in seconds
    request_timeout: float = Field(120.0, gt=0)
    stream_timeout: Optional[float] = Field(300.0, gt=0)
    max_conversations: Optional[int] = Field(None, gt=0)
    conversation_ttl: Optional[float] = Field(None, gt=0)
    error_frames: bool = False


def _env_overrides() -> dict:
    overrides: dict = {}
    for name in Settings.model_fields:
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is None:
            continue
        # Empty string clears optional bounds
        overrides[name] = None if value == "" else value
    return overrides


def load_settings(config_path: Optional[str] = None, **overrides) -> Settings:
    """Build Settings from config.json, the environment, then explicit overrides."""
    load_dotenv()
    data: dict = {}
    if config_path and os.path.exists(config_path):
        _logger.info("Loading config_path=%s", config_path)
        with open(config_path, "r", encoding="utf-8") as config_file:
            data = json.load(config_file)
        _logger.info("Config keys=%s", sorted(data.keys()))
    data.update(_env_overrides())
    data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings.model_validate(data)
