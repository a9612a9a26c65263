"""Speech-to-text via the AssemblyAI REST API."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..errors import (
    ApiError,
    ConfigError,
    RequestTimeoutError,
    ValidationError,
    VoiceAgentError,
    classify_http_error,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "Assembly AI"
UPLOAD_TIMEOUT = 15.0
SUBMIT_TIMEOUT = 10.0
POLL_TIMEOUT = 5.0
POLL_INTERVAL = 1.0
MAX_POLL_ATTEMPTS = 30


class TranscriptionService:
    """Uploads audio, starts a transcription job and polls it to completion."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        config: Optional[Settings] = None,
        poll_interval: float = POLL_INTERVAL,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        config = config or default_settings
        self._api_key = api_key if api_key is not None else config.assembly_api_key
        self._base_url = (base_url or config.assembly_base_url).rstrip("/")
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._transport = transport
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool((self._api_key or "").strip())

    async def transcribe(self, audio_bytes: bytes) -> str:
        """Convert the provided audio bytes into a text transcript.

        Raises a `VoiceAgentError` subclass on any failure; choosing a placeholder
        transcript is left to the caller.
        """

        if not self.configured:
            raise ConfigError("Assembly AI API key not configured")
        if not isinstance(audio_bytes, (bytes, bytearray)) or len(audio_bytes) == 0:
            raise ValidationError("Invalid audio buffer provided")

        logger.info("Starting transcription with Assembly AI (%d bytes)", len(audio_bytes))
        headers = {"Authorization": self._api_key or ""}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, headers=headers, transport=self._transport
            ) as client:
                upload_url = await self._upload(client, bytes(audio_bytes))
                transcript_id = await self._submit(client, upload_url)
                return await self._poll(client, transcript_id)
        except VoiceAgentError:
            raise
        except httpx.HTTPError as exc:
            logger.error("Transcription request failed: %s", exc)
            raise classify_http_error(exc, SERVICE_NAME) from exc

    async def _upload(self, client: httpx.AsyncClient, audio_bytes: bytes) -> str:
        resp = await client.post(
            "/upload",
            content=audio_bytes,
            headers={"Content-Type": "application/octet-stream"},
            timeout=UPLOAD_TIMEOUT,
        )
        resp.raise_for_status()
        upload_url = _json_body(resp).get("upload_url")
        if not upload_url:
            raise ApiError("Failed to upload audio to Assembly AI")
        logger.info("Audio uploaded successfully")
        return str(upload_url)

    async def _submit(self, client: httpx.AsyncClient, upload_url: str) -> str:
        resp = await client.post(
            "/transcript",
            json={"audio_url": upload_url, "language_code": "en"},
            timeout=SUBMIT_TIMEOUT,
        )
        resp.raise_for_status()
        transcript_id = _json_body(resp).get("id")
        if not transcript_id:
            raise ApiError("Failed to start transcription")
        logger.info("Transcription started, ID: %s", transcript_id)
        return str(transcript_id)

    async def _poll(self, client: httpx.AsyncClient, transcript_id: str) -> str:
        for attempt in range(1, self._max_attempts + 1):
            resp = await client.get(f"/transcript/{transcript_id}", timeout=POLL_TIMEOUT)
            resp.raise_for_status()
            data = _json_body(resp)
            status = data.get("status")
            logger.debug("Transcription %s status (attempt %d): %s", transcript_id, attempt, status)

            if status == "completed":
                text = (data.get("text") or "").strip()
                if not text:
                    raise ApiError("Transcription completed without any recognised speech")
                logger.info("Transcription completed: %s", text)
                return text
            if status == "error":
                raise ApiError(f"Transcription failed: {data.get('error') or 'Unknown error'}")

            if attempt < self._max_attempts:
                await self._sleep(self._poll_interval)

        raise RequestTimeoutError("Transcription timeout")


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise ApiError(f"Malformed response from {SERVICE_NAME}") from exc
    if not isinstance(data, dict):
        raise ApiError(f"Malformed response from {SERVICE_NAME}")
    return data
