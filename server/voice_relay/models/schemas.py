"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(BaseModel):
    """Typed error body returned for every failed request."""

    error: str
    type: str


class MessageOut(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime


class HistoryResponse(_CamelModel):
    """Conversation history for one session."""

    session_id: str = Field(..., alias="sessionId")
    messages: List[MessageOut] = Field(default_factory=list)
    message_count: int = Field(..., alias="messageCount")


class ClearHistoryResponse(_CamelModel):
    message: str = Field(default="Chat history cleared")
    session_id: str = Field(..., alias="sessionId")


class HealthResponse(BaseModel):
    status: Literal["OK", "DEGRADED"]
    message: str
    errors: Optional[List[str]] = Field(default=None, description="Missing configuration, when degraded")


class ControlFrame(BaseModel):
    """JSON control message sent by a streaming client."""

    type: str


class StreamFrame(_CamelModel):
    """Acknowledgement or error frame sent back to a streaming client."""

    type: Literal[
        "session_established",
        "recording_confirmed",
        "audio_received",
        "recording_saved",
        "error",
    ]
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    message: Optional[str] = None
    chunk_size: Optional[int] = Field(default=None, alias="chunkSize")
    timestamp: Optional[str] = None
    file_path: Optional[str] = Field(default=None, alias="filePath")
    error: Optional[str] = None
    details: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
