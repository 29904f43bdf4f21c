"""
Typed configuration loaded from environment variables.

The ``Chatwire`` facade builds its default pillars from a ``Settings``
instance; pass one explicitly to override any value.
"""

import os

from pydantic import BaseModel, Field

from .models import DEFAULT_MODEL

API_URL = "https://api.anthropic.com/v1/messages"
HISTORY_SUFFIX = ".claude-history.json"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


class Settings(BaseModel):
    api_key: str = Field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""))
    model: str = Field(default_factory=lambda: os.getenv("CHATWIRE_MODEL", DEFAULT_MODEL))
    max_tokens: int = Field(default_factory=lambda: _env_int("CHATWIRE_MAX_TOKENS", 4096))
    api_url: str = Field(default_factory=lambda: os.getenv("CHATWIRE_API_URL", API_URL))
    request_timeout: float = 600.0
    history_suffix: str = HISTORY_SUFFIX
