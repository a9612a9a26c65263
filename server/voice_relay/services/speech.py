"""Outbound speech payloads.

No synthesis backend is wired in: the payload is the reply text itself, tagged
so the client can tell it apart from real audio.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import ValidationError

logger = logging.getLogger(__name__)

RESPONSE_PREFIX = "AI Response: "
ENCODING_FALLBACK_PREFIX = "Error generating speech. Here is the text response: "
CONNECTION_FALLBACK_PREFIX = "I'm having trouble connecting right now. "

# Payloads at or below this size are served as text.
AUDIO_MIN_BYTES = 100


def response_media_type(payload: bytes) -> str:
    """Pick the response content type from the payload size."""

    return "audio/mpeg" if len(payload) > AUDIO_MIN_BYTES else "text/plain"


def fallback_audio_payload(message: str) -> bytes:
    return (CONNECTION_FALLBACK_PREFIX + message).encode("utf-8")


@dataclass(frozen=True)
class EncodedSpeech:
    payload: bytes
    media_type: str


class SpeechEncoder:
    """Turns reply text into the payload returned to the caller."""

    def _render(self, text: str) -> bytes:
        return (RESPONSE_PREFIX + text).encode("utf-8")

    def encode(self, text: str) -> EncodedSpeech:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Invalid text provided for speech generation")

        logger.info("Generating speech for text: %s", text)
        try:
            payload = self._render(text)
        except Exception:
            logger.exception("Speech generation failed; returning text payload")
            payload = (ENCODING_FALLBACK_PREFIX + text).encode("utf-8", errors="replace")
        return EncodedSpeech(payload=payload, media_type=response_media_type(payload))
