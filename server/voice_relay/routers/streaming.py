"""WebSocket endpoint that records streamed audio chunks to disk."""
from __future__ import annotations

import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as FrameValidationError

from ..models.schemas import ControlFrame, StreamFrame
from ..services.audio_stream import StreamingAudioSink

logger = logging.getLogger(__name__)

router = APIRouter(tags=["streaming"])

_BASE36 = string.digits + string.ascii_lowercase


def new_stream_session_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"ws_session_{int(time.time() * 1000)}_{suffix}"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def _send(websocket: WebSocket, frame: StreamFrame) -> None:
    await websocket.send_text(json.dumps(frame.to_wire()))


async def _handle_control(websocket: WebSocket, sink: StreamingAudioSink, raw: str) -> None:
    frame = ControlFrame.model_validate_json(raw)
    logger.info("[Session %s] Received control message: %s", sink.session_id, frame.type)

    if frame.type == "recording_started":
        await _send(
            websocket,
            StreamFrame(
                type="recording_confirmed",
                session_id=sink.session_id,
                message="Recording confirmed, ready to receive audio",
            ),
        )
    elif frame.type == "recording_stopped":
        path = sink.finalize()
        await _send(
            websocket,
            StreamFrame(
                type="recording_saved",
                session_id=sink.session_id,
                file_path=str(path),
                message="Audio recording saved successfully",
            ),
        )
    else:
        logger.debug("[Session %s] Ignoring control message type %r", sink.session_id, frame.type)


async def _handle_chunk(websocket: WebSocket, sink: StreamingAudioSink, chunk: bytes) -> None:
    sink.write(chunk)
    logger.debug("[Session %s] Received audio chunk: %d bytes", sink.session_id, len(chunk))
    await _send(
        websocket,
        StreamFrame(
            type="audio_received",
            chunk_size=len(chunk),
            session_id=sink.session_id,
            timestamp=_iso_now(),
        ),
    )


@router.websocket("/ws")
async def audio_stream_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    session_id = new_stream_session_id()
    upload_dir = Path(websocket.app.state.settings.upload_dir)
    logger.info("WebSocket connection established: %s", session_id)

    with StreamingAudioSink(upload_dir, session_id) as sink:
        try:
            await _send(
                websocket,
                StreamFrame(
                    type="session_established",
                    session_id=session_id,
                    message="WebSocket connection established for audio streaming",
                ),
            )
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                try:
                    if message.get("bytes") is not None:
                        await _handle_chunk(websocket, sink, message["bytes"])
                    elif message.get("text") is not None:
                        await _handle_control(websocket, sink, message["text"])
                except (ValueError, FrameValidationError) as exc:
                    logger.error("[Session %s] Error processing WebSocket message: %s", session_id, exc)
                    await _send(
                        websocket,
                        StreamFrame(type="error", error="Failed to process audio data", details=str(exc)),
                    )
        except WebSocketDisconnect:
            pass
        finally:
            logger.info("WebSocket connection closed: %s", session_id)
