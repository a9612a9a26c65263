"""Configuration helpers for the voice relay service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_flag(name: str, *, default: bool) -> bool:
    """Return True if the environment flag is set to a truthy value."""

    raw = os.getenv(name)
    if raw is None:
        return default

    normalized = raw.strip().lower()
    return normalized in {"1", "true", "yes", "on"}


def _env_int(name: str, *, default: int) -> int:
    """Return the integer value stored in an environment variable or fallback."""

    raw = os.getenv(name)
    if raw is None:
        return default

    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Missing credentials are tolerated: the server still starts, `/health` reports
    a degraded status and the conversation pipeline falls back to canned replies.
    """

    assembly_api_key: Optional[str] = os.getenv("ASSEMBLY_API_KEY")
    gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY")
    port: int = _env_int("PORT", default=3000)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    upload_dir: str = os.getenv("UPLOAD_DIR", "uploads")
    assembly_base_url: str = os.getenv("ASSEMBLY_BASE_URL", "https://api.assemblyai.com/v2")
    # Gemini exposes an OpenAI-compatible surface, so the openai SDK can talk to it directly.
    llm_base_url: str = os.getenv("LLM_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/")
    llm_model: str = os.getenv("LLM_MODEL", "gemini-2.0-flash")
    serialize_sessions: bool = _env_flag("SERIALIZE_SESSIONS", default=False)


def validate_api_config(config: Settings) -> list[str]:
    """Return one message per required credential that is absent or blank."""

    errors: list[str] = []
    if not (config.gemini_api_key or "").strip():
        errors.append("GEMINI_API_KEY is not configured")
    if not (config.assembly_api_key or "").strip():
        errors.append("ASSEMBLY_API_KEY is not configured")
    return errors


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
