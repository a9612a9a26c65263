"""Conversation pipeline: transcribe, contextualize, respond, encode."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..errors import ApiError, ErrorKind, ValidationError, VoiceAgentError
from .response_generation import ResponseGenerator
from .session_store import Message, SessionStore
from .speech import EncodedSpeech, SpeechEncoder, fallback_audio_payload, response_media_type
from .transcription import TranscriptionService

logger = logging.getLogger(__name__)

MAX_AUDIO_BYTES = 10 * 1024 * 1024

FALLBACK_TRANSCRIPT = "Hello, I am having trouble understanding your audio. Could you please try again?"
FALLBACK_REPLY = "I'm having trouble connecting to my AI services right now. Please try again in a moment."


class PipelineStage(Enum):
    """Linear lifecycle of one conversation turn."""

    RECEIVED = "received"
    TRANSCRIBING = "transcribing"
    CONTEXTUALIZING = "contextualizing"
    GENERATING = "generating"
    ENCODING = "encoding"
    RESPONDED = "responded"


@dataclass(frozen=True)
class StageOutcome:
    """Result tag for one stage; `detail` is only set when a substitute was used."""

    stage: PipelineStage
    kind: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def substituted(self) -> bool:
        return self.detail is not None


@dataclass
class OrchestrationContext:
    """Mutable state for a single request while it moves through the pipeline."""

    session_id: str
    stage: PipelineStage = PipelineStage.RECEIVED
    transcript: Optional[str] = None
    history: tuple[Message, ...] = ()
    reply: Optional[str] = None
    speech: Optional[EncodedSpeech] = None
    outcomes: list[StageOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class ChatResult:
    session_id: str
    transcript: str
    reply: str
    payload: bytes
    media_type: str
    outcomes: tuple[StageOutcome, ...] = ()

    @property
    def fallbacks(self) -> tuple[StageOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.substituted)


def _outcome_for(stage: PipelineStage, exc: Exception) -> StageOutcome:
    kind = exc.kind if isinstance(exc, VoiceAgentError) else None
    return StageOutcome(stage=stage, kind=kind, detail=str(exc) or type(exc).__name__)


def _discard(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("Error cleaning up uploaded file %s", path)


class ConversationOrchestrator:
    """Runs one audio turn end to end.

    Only the up-front request validation can fail a turn. Every later failure is
    logged and replaced by a fixed substitute so the caller always gets a reply.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        transcriber: TranscriptionService,
        generator: ResponseGenerator,
        encoder: Optional[SpeechEncoder] = None,
        serialize_sessions: bool = False,
        max_audio_bytes: int = MAX_AUDIO_BYTES,
    ) -> None:
        self.store = store
        self.transcriber = transcriber
        self.generator = generator
        self.encoder = encoder or SpeechEncoder()
        self.serialize_sessions = serialize_sessions
        self.max_audio_bytes = max_audio_bytes

    async def handle_audio(self, session_id: str, audio_path: Optional[Path]) -> ChatResult:
        """Process the uploaded recording at `audio_path` for `session_id`.

        The file is deleted before returning, whatever the outcome.
        """

        try:
            context = OrchestrationContext(session_id=session_id)
            audio = self._receive(context, audio_path)
            if self.serialize_sessions:
                async with self.store.lock(session_id):
                    return await self._converse(context, audio)
            return await self._converse(context, audio)
        finally:
            _discard(audio_path)

    def _set_stage(self, context: OrchestrationContext, stage: PipelineStage) -> None:
        old_stage = context.stage
        context.stage = stage
        logger.debug("[Session %s] Pipeline stage: %s -> %s", context.session_id, old_stage.value, stage.value)

    def _receive(self, context: OrchestrationContext, audio_path: Optional[Path]) -> bytes:
        if not isinstance(context.session_id, str) or not context.session_id.strip():
            raise ValidationError("Invalid session ID")
        if audio_path is None or not audio_path.is_file():
            raise ValidationError("No audio file provided")

        size = audio_path.stat().st_size
        if size == 0:
            raise ValidationError("No audio file provided")
        if size > self.max_audio_bytes:
            raise ValidationError("Audio file too large (max 10MB)")

        logger.info("[Session %s] Processing audio (%d bytes)", context.session_id, size)
        return audio_path.read_bytes()

    async def _converse(self, context: OrchestrationContext, audio: bytes) -> ChatResult:
        await self._transcribe(context, audio)
        self.store.append(context.session_id, "user", context.transcript or "")

        self._set_stage(context, PipelineStage.CONTEXTUALIZING)
        context.history = self.store.get(context.session_id)
        context.outcomes.append(StageOutcome(PipelineStage.CONTEXTUALIZING))

        await self._generate(context)
        self.store.append(context.session_id, "assistant", context.reply or "")

        speech = self._encode(context)
        self._set_stage(context, PipelineStage.RESPONDED)

        if any(outcome.substituted for outcome in context.outcomes):
            logger.info(
                "[Session %s] Responded with substitutes for: %s",
                context.session_id,
                ", ".join(o.stage.value for o in context.outcomes if o.substituted),
            )
        return ChatResult(
            session_id=context.session_id,
            transcript=context.transcript or FALLBACK_TRANSCRIPT,
            reply=context.reply or FALLBACK_REPLY,
            payload=speech.payload,
            media_type=speech.media_type,
            outcomes=tuple(context.outcomes),
        )

    async def _transcribe(self, context: OrchestrationContext, audio: bytes) -> None:
        self._set_stage(context, PipelineStage.TRANSCRIBING)
        try:
            transcript = await self.transcriber.transcribe(audio)
            if not isinstance(transcript, str) or not transcript.strip():
                raise ApiError("Transcription returned no text")
            context.transcript = transcript
            context.outcomes.append(StageOutcome(PipelineStage.TRANSCRIBING))
        except Exception as exc:
            logger.warning("[Session %s] Transcription failed, using fallback transcript: %s", context.session_id, exc)
            context.transcript = FALLBACK_TRANSCRIPT
            context.outcomes.append(_outcome_for(PipelineStage.TRANSCRIBING, exc))
        logger.info("[Session %s] Transcription: %s", context.session_id, context.transcript)

    async def _generate(self, context: OrchestrationContext) -> None:
        self._set_stage(context, PipelineStage.GENERATING)
        transcript = context.transcript or FALLBACK_TRANSCRIPT
        try:
            context.reply = await self.generator.generate(transcript, context.history)
            context.outcomes.append(StageOutcome(PipelineStage.GENERATING))
        except Exception as exc:
            logger.warning("[Session %s] Reply generation failed, using fallback reply: %s", context.session_id, exc)
            context.reply = FALLBACK_REPLY
            context.outcomes.append(_outcome_for(PipelineStage.GENERATING, exc))
        logger.info("[Session %s] Reply: %s", context.session_id, context.reply)

    def _encode(self, context: OrchestrationContext) -> EncodedSpeech:
        self._set_stage(context, PipelineStage.ENCODING)
        reply = context.reply or FALLBACK_REPLY
        try:
            speech = self.encoder.encode(reply)
            context.outcomes.append(StageOutcome(PipelineStage.ENCODING))
        except Exception as exc:
            logger.warning("[Session %s] Speech encoding failed, using fallback payload: %s", context.session_id, exc)
            payload = fallback_audio_payload(reply)
            speech = EncodedSpeech(payload=payload, media_type=response_media_type(payload))
            context.outcomes.append(_outcome_for(PipelineStage.ENCODING, exc))
        context.speech = speech
        return speech
