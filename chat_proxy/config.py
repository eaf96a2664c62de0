"""Configuration utilities for the chat proxy service."""
from __future__ import annotations

import json
import os
import re
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_BLOCKED_PATTERNS = [r"(?:malicious|hack|exploit|inject)"]


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    longcat_api_key: Optional[str] = None
    longcat_base_url: str = "https://api.longcat.chat/openai/v1"
    longcat_model: str = "LongCat-Flash-Chat"
    upstream_timeout_seconds: float = Field(default=15.0, gt=0)
    environment: str = "production"
    blocked_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_PATTERNS)
    )
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    user_agent: str = "chat-proxy/1.0"

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("blocked_patterns", mode="before")
    @classmethod
    def parse_patterns(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [pattern.strip() for pattern in stripped.split(",") if pattern.strip()]
        return value

    @field_validator("blocked_patterns")
    @classmethod
    def check_patterns_compile(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid blocked pattern {pattern!r}: {exc}") from exc
        return value

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        data = {
            "longcat_api_key": os.getenv("CHAT_PROXY_LONGCAT_API_KEY")
            or os.getenv("LONGCAT_API_KEY"),
            "longcat_base_url": os.getenv(
                "CHAT_PROXY_LONGCAT_BASE_URL", "https://api.longcat.chat/openai/v1"
            ),
            "longcat_model": os.getenv("CHAT_PROXY_LONGCAT_MODEL", "LongCat-Flash-Chat"),
            "upstream_timeout_seconds": os.getenv(
                "CHAT_PROXY_UPSTREAM_TIMEOUT_SECONDS", "15"
            ),
            "environment": os.getenv("CHAT_PROXY_ENVIRONMENT")
            or os.getenv("NODE_ENV", "production"),
            "allowed_origins": os.getenv("CHAT_PROXY_ALLOWED_ORIGINS", "*"),
            "user_agent": os.getenv("CHAT_PROXY_USER_AGENT", "chat-proxy/1.0"),
        }
        patterns = os.getenv("CHAT_PROXY_BLOCKED_PATTERNS")
        if patterns is not None:
            data["blocked_patterns"] = patterns
        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings.

    A missing API key is not an error here: the pipeline reports it per request
    so the service can still start and answer health checks.
    """

    return Settings.from_env()
