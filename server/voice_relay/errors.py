"""Error taxonomy shared by the conversation pipeline and the HTTP layer."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import httpx
import openai

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Tag for every failure the relay can report, with its default HTTP status."""

    VALIDATION = ("VALIDATION_ERROR", 400)
    CONFIG = ("CONFIG_ERROR", 500)
    API = ("API_ERROR", 500)
    TIMEOUT = ("TIMEOUT_ERROR", 408)
    AUTH = ("AUTH_ERROR", 401)
    RATE_LIMIT = ("RATE_LIMIT_ERROR", 429)

    def __init__(self, type_name: str, status_code: int) -> None:
        self.type_name = type_name
        self.status_code = status_code


class VoiceAgentError(Exception):
    """Base error carrying the `(message, kind, status_code)` triple."""

    kind: ErrorKind = ErrorKind.API

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.kind.status_code

    @property
    def type(self) -> str:
        return self.kind.type_name

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message, "type": self.type}


class ValidationError(VoiceAgentError):
    kind = ErrorKind.VALIDATION


class ConfigError(VoiceAgentError):
    kind = ErrorKind.CONFIG


class ApiError(VoiceAgentError):
    kind = ErrorKind.API


class RequestTimeoutError(VoiceAgentError):
    kind = ErrorKind.TIMEOUT


class AuthError(VoiceAgentError):
    kind = ErrorKind.AUTH


class RateLimitError(VoiceAgentError):
    kind = ErrorKind.RATE_LIMIT


def _from_status(status: int, service: str) -> Optional[VoiceAgentError]:
    if status == 401:
        return AuthError(f"Invalid {service} API key")
    if status == 429:
        return RateLimitError(f"{service} API rate limit exceeded")
    if status >= 500:
        return ApiError(f"{service} API server error", status_code=502)
    return None


def classify_http_error(exc: httpx.HTTPError, service: str) -> VoiceAgentError:
    """Map an httpx failure onto the error family.

    Statuses without a dedicated class still become a generic `ApiError`.
    """

    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(f"{service} request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        classified = _from_status(status, service)
        if classified is not None:
            return classified
        return ApiError(f"{service} request failed with status {status}")
    return ApiError(f"{service} request failed: {exc}")


def classify_openai_error(exc: openai.OpenAIError, service: str) -> Optional[VoiceAgentError]:
    """Map an openai SDK failure onto the error family.

    Returns None when the failure is not one the caller must propagate, which is
    the signal to use a locally generated reply instead.
    """

    if isinstance(exc, openai.APITimeoutError):
        return RequestTimeoutError(f"{service} API request timed out")
    if isinstance(exc, openai.APIStatusError):
        return _from_status(exc.status_code, service)
    return None
