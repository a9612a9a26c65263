from __future__ import annotations

import pytest

from voice_relay.services.audio_stream import MIN_RECORDING_BYTES, StreamingAudioSink


def test_chunks_are_written_in_order_and_kept_when_large(tmp_path):
    with StreamingAudioSink(tmp_path / "uploads", "s1") as sink:
        sink.write(b"a" * MIN_RECORDING_BYTES)
        sink.write(b"b" * 10)
        path = sink.finalize()

    assert path == tmp_path / "uploads" / "streaming_audio_s1.webm"
    assert path.read_bytes() == b"a" * MIN_RECORDING_BYTES + b"b" * 10
    assert sink.bytes_written == MIN_RECORDING_BYTES + 10


def test_small_recordings_are_removed_on_close(tmp_path):
    sink = StreamingAudioSink(tmp_path, "tiny")
    sink.write(b"short")
    sink.close()

    assert not sink.path.exists()


def test_close_runs_once(tmp_path):
    sink = StreamingAudioSink(tmp_path, "once")
    sink.close()
    sink.close()
    assert sink.finalized


def test_writes_after_finalize_are_rejected(tmp_path):
    sink = StreamingAudioSink(tmp_path, "stopped")
    sink.finalize()
    with pytest.raises(ValueError):
        sink.write(b"late chunk")
    sink.close()


def test_sink_is_closed_when_the_block_raises(tmp_path):
    with pytest.raises(RuntimeError):
        with StreamingAudioSink(tmp_path, "boom") as sink:
            sink.write(b"x")
            raise RuntimeError("connection dropped")

    assert sink.finalized
    assert not sink.path.exists()
