"""File sink for audio streamed over a WebSocket connection."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)

# Recordings smaller than this are treated as empty and removed on close.
MIN_RECORDING_BYTES = 1024


class StreamingAudioSink:
    """Per-connection recording file.

    Opened on construction, written in arrival order, finalized when the client
    stops recording and closed exactly once when the connection ends.
    """

    def __init__(self, upload_dir: Path | str, session_id: str) -> None:
        directory = Path(upload_dir)
        directory.mkdir(parents=True, exist_ok=True)
        self.session_id = session_id
        self.path = directory / f"streaming_audio_{session_id}.webm"
        self._file: Optional[BinaryIO] = self.path.open("wb")
        self._closed = False
        self.bytes_written = 0
        logger.info("Audio file created: %s", self.path)

    @property
    def finalized(self) -> bool:
        return self._file is None

    def write(self, chunk: bytes) -> int:
        if self._file is None:
            raise ValueError("Recording already stopped for this connection")
        written = self._file.write(chunk)
        self.bytes_written += written
        return written

    def finalize(self) -> Path:
        """Flush and close the file, keeping it on disk."""

        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info("[Session %s] Recording saved (%d bytes)", self.session_id, self.bytes_written)
        return self.path

    def close(self) -> None:
        """Release the sink; undersized recordings are deleted."""

        if self._closed:
            return
        self._closed = True
        self.finalize()
        try:
            if self.path.stat().st_size < MIN_RECORDING_BYTES:
                self.path.unlink()
                logger.info("Removed empty audio file: %s", self.path)
        except OSError as exc:
            logger.info("Could not remove audio file: %s", exc)

    def __enter__(self) -> "StreamingAudioSink":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
