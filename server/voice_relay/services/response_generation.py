"""Conversational reply generation with a keyword-rule fallback."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

import httpx
from openai import AsyncOpenAI, OpenAIError

from ..config import Settings, settings as default_settings
from ..errors import ApiError, ConfigError, ValidationError, classify_openai_error
from .session_store import Message

logger = logging.getLogger(__name__)

SERVICE_NAME = "Gemini"
REQUEST_TIMEOUT = 10.0

SYSTEM_PREAMBLE = "You are a helpful AI voice assistant. "
REPLY_INSTRUCTIONS = (
    "Please provide a natural, conversational response. "
    "Keep it concise (1-2 sentences) and friendly."
)

Reply = Callable[[], str]


def _current_time() -> str:
    return f"The current time is {datetime.now().strftime('%I:%M:%S %p').lstrip('0')}."


def _current_date() -> str:
    now = datetime.now()
    return f"Today is {now.month}/{now.day}/{now.year}."


# Checked in order against the lower-cased transcript; first match wins.
FALLBACK_REPLIES: tuple[tuple[str, Reply], ...] = (
    ("hello", lambda: "Hello! How can I help you today?"),
    ("how are you", lambda: "I'm doing well, thank you for asking! How can I assist you?"),
    ("what is your name", lambda: "I'm your AI voice assistant. Nice to meet you!"),
    ("thank you", lambda: "You're welcome! Is there anything else I can help you with?"),
    ("goodbye", lambda: "Goodbye! Have a great day!"),
    ("help", lambda: "I can help you with various tasks. Just ask me anything!"),
    ("time", _current_time),
    ("date", _current_date),
    ("weather", lambda: "I'm sorry, I don't have access to weather information right now."),
    ("joke", lambda: "Why don't scientists trust atoms? Because they make up everything! 😄"),
    ("error", lambda: "I'm having trouble connecting right now. Please try again later."),
    ("connection", lambda: "I'm experiencing connection issues. Let me try to help you with a basic response."),
)


def fallback_reply(transcript: str) -> str:
    """Deterministic rule-based reply used when the model cannot be reached."""

    lowered = transcript.lower()
    for keyword, reply in FALLBACK_REPLIES:
        if keyword in lowered:
            return reply()
    return (
        f'I heard you say: "{transcript}". '
        "I'm currently experiencing some technical difficulties, but I'm here to help!"
    )


def build_context(history: Sequence[Message]) -> str:
    """Render prior turns oldest-first as `role: content` lines."""

    lines = [f"{msg.role}: {msg.content}" for msg in history if msg.role and msg.content]
    if not lines:
        return ""
    return "Previous conversation:\n" + "\n".join(lines) + "\n\n"


def build_prompt(transcript: str, history: Sequence[Message]) -> str:
    return f'{SYSTEM_PREAMBLE}{build_context(history)}The user said: "{transcript}". {REPLY_INSTRUCTIONS}'


class ResponseGenerator:
    """Calls the language model through its OpenAI-compatible endpoint."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        config: Optional[Settings] = None,
        client: Optional[Any] = None,
        model: Optional[str] = None,
    ) -> None:
        config = config or default_settings
        self._api_key = api_key if api_key is not None else config.gemini_api_key
        self._base_url = config.llm_base_url
        self._model = model or config.llm_model
        self._client = client

    @property
    def configured(self) -> bool:
        return bool((self._api_key or "").strip())

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=REQUEST_TIMEOUT,
                max_retries=0,
            )
        return self._client

    async def generate(self, transcript: str, history: Sequence[Message] = ()) -> str:
        """Produce a short reply to `transcript` given the prior conversation.

        Timeouts, rejected credentials, throttling and upstream 5xx responses are
        raised as typed errors. Any other failure of the model call is answered
        by `fallback_reply`.
        """

        if not self.configured:
            raise ConfigError("Gemini API key not configured")
        if not isinstance(transcript, str) or not transcript.strip():
            raise ValidationError("Invalid transcript provided")

        logger.info(
            "Generating reply for transcript %r (history length %d)", transcript, len(history)
        )
        prompt = build_prompt(transcript, history)

        try:
            completion = await self._ensure_client().chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                timeout=REQUEST_TIMEOUT,
            )
        except OpenAIError as exc:
            classified = classify_openai_error(exc, SERVICE_NAME)
            if classified is not None:
                logger.error("Gemini API error: %s", classified.message)
                raise classified from exc
            logger.warning("Using fallback responses due to Gemini API error: %s", exc)
            return fallback_reply(transcript)
        except httpx.HTTPError as exc:
            logger.warning("Using fallback responses due to transport error: %s", exc)
            return fallback_reply(transcript)

        return _extract_reply(completion)


def _extract_reply(completion: Any) -> str:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        raise ApiError("Invalid response from Gemini API")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if not isinstance(content, str) or not content.strip():
        raise ApiError("Invalid response from Gemini API")
    reply = content.strip()
    logger.info("Gemini response: %s", reply)
    return reply
