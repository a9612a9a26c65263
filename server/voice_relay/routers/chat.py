"""Conversation endpoints: audio turns and per-session history."""
from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile

from ..errors import ValidationError
from ..models import schemas
from ..services.orchestration import MAX_AUDIO_BYTES, ConversationOrchestrator
from ..services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent/chat", tags=["chat"])

_CHUNK_SIZE = 64 * 1024


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    return request.app.state.orchestrator


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_upload_dir(request: Request) -> Path:
    return Path(request.app.state.settings.upload_dir)


def _is_audio_upload(upload: UploadFile) -> bool:
    content_type = (upload.content_type or "").lower()
    return content_type.startswith("audio/") or content_type == "application/octet-stream"


async def _spool_upload(upload: UploadFile, upload_dir: Path) -> Path:
    """Copy the multipart file into the upload directory and return its path."""

    upload_dir.mkdir(parents=True, exist_ok=True)
    target = upload_dir / uuid.uuid4().hex
    size = 0
    try:
        with target.open("wb") as sink:
            while chunk := await upload.read(_CHUNK_SIZE):
                size += len(chunk)
                if size > MAX_AUDIO_BYTES:
                    raise ValidationError("File too large (max 10MB)")
                sink.write(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise
    return target


@router.post(
    "/{session_id}",
    responses={200: {"content": {"audio/mpeg": {}, "text/plain": {}}}, 400: {"model": schemas.ErrorResponse}},
)
async def chat(
    session_id: str,
    audio: Optional[UploadFile] = File(default=None),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    upload_dir: Path = Depends(get_upload_dir),
) -> Response:
    """Run one conversation turn for the uploaded recording."""

    if audio is None or not audio.filename:
        raise ValidationError("No audio file provided")
    if not _is_audio_upload(audio):
        raise ValidationError("Only audio files are allowed")

    audio_path = await _spool_upload(audio, upload_dir)
    try:
        result = await orchestrator.handle_audio(session_id, audio_path)
    finally:
        audio_path.unlink(missing_ok=True)
    return Response(content=result.payload, media_type=result.media_type)


@router.get("/{session_id}/history", response_model=schemas.HistoryResponse)
async def get_history(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> schemas.HistoryResponse:
    """Return the stored conversation for a session."""

    history = store.get(session_id)
    return schemas.HistoryResponse(
        session_id=session_id,
        messages=[
            schemas.MessageOut(role=msg.role, content=msg.content, timestamp=msg.timestamp)
            for msg in history
        ],
        message_count=len(history),
    )


@router.delete("/{session_id}/history", response_model=schemas.ClearHistoryResponse)
async def clear_history(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> schemas.ClearHistoryResponse:
    store.clear(session_id)
    return schemas.ClearHistoryResponse(session_id=session_id)
