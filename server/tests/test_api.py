from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest
from fastapi.testclient import TestClient

from voice_relay.config import Settings
from voice_relay.main import create_app
from voice_relay.routers import chat
from voice_relay.services.orchestration import ConversationOrchestrator
from voice_relay.services.response_generation import ResponseGenerator
from voice_relay.services.session_store import SessionStore
from voice_relay.services.transcription import TranscriptionService


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "assembly_api_key": "aai-key",
        "gemini_api_key": "gemini-key",
        "upload_dir": str(tmp_path / "uploads"),
        "serialize_sessions": False,
    }
    values.update(overrides)
    return Settings(**values)


class _FailingCompletions:
    async def create(self, **kwargs):  # noqa: ANN003
        request = httpx.Request("POST", "https://llm.test/chat/completions")
        raise openai.InternalServerError(
            "unavailable", response=httpx.Response(503, request=request), body=None
        )


class _EchoCompletions:
    async def create(self, **kwargs):  # noqa: ANN003
        message = SimpleNamespace(content="Nice to hear from you.")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(tmp_path: Path, *, transcription_handler, completions, **setting_overrides) -> TestClient:
    config = _settings(tmp_path, **setting_overrides)
    orchestrator = ConversationOrchestrator(
        store=SessionStore(),
        transcriber=TranscriptionService(
            config=config,
            base_url="https://assembly.test/v2",
            transport=httpx.MockTransport(transcription_handler),
            poll_interval=0,
        ),
        generator=ResponseGenerator(
            config=config,
            client=SimpleNamespace(chat=SimpleNamespace(completions=completions)),
        ),
    )
    return TestClient(create_app(config, orchestrator=orchestrator))


def _services_down(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"error": "maintenance"})


def _transcribes_to(text: str):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/upload"):
            return httpx.Response(200, json={"upload_url": "https://cdn.test/a"})
        if request.method == "POST":
            return httpx.Response(200, json={"id": "job-1"})
        return httpx.Response(200, json={"status": "completed", "text": text})

    return handler


@pytest.fixture
def down_client(tmp_path):
    return _client(tmp_path, transcription_handler=_services_down, completions=_FailingCompletions())


def _audio_file(content: bytes = b"\x1aE\xdf\xa3 fake webm", content_type: str = "audio/webm"):
    return {"audio": ("recording.webm", content, content_type)}


def test_chat_without_audio_is_a_validation_error(down_client):
    resp = down_client.post("/agent/chat/abc")

    assert resp.status_code == 400
    assert resp.json()["type"] == "VALIDATION_ERROR"


def test_chat_rejects_non_audio_uploads(down_client):
    resp = down_client.post("/agent/chat/abc", files=_audio_file(b"hello", "text/html"))

    assert resp.status_code == 400
    assert resp.json() == {"error": "Only audio files are allowed", "type": "VALIDATION_ERROR"}


def test_chat_with_unparseable_multipart_body_is_a_validation_error(down_client):
    resp = down_client.post(
        "/agent/chat/abc", content=b"", headers={"Content-Type": "multipart/form-data"}
    )

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid form data or missing audio file", "type": "VALIDATION_ERROR"}


def test_chat_refuses_oversized_uploads_before_processing(down_client, tmp_path, monkeypatch):
    monkeypatch.setattr(chat, "MAX_AUDIO_BYTES", 16)

    resp = down_client.post("/agent/chat/abc", files=_audio_file(b"x" * 17))

    assert resp.status_code == 400
    assert resp.json() == {"error": "File too large (max 10MB)", "type": "VALIDATION_ERROR"}
    assert list((tmp_path / "uploads").iterdir()) == []
    assert down_client.get("/agent/chat/abc/history").json()["messageCount"] == 0


def test_chat_with_every_service_down_still_replies(down_client, tmp_path):
    resp = down_client.post("/agent/chat/abc", files=_audio_file())

    assert resp.status_code == 200
    assert b"trouble connecting" in resp.content
    assert int(resp.headers["content-length"]) == len(resp.content)

    history = down_client.get("/agent/chat/abc/history").json()
    assert history["messageCount"] == 2
    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]
    assert list((tmp_path / "uploads").iterdir()) == []


def test_chat_round_trip_with_working_services(tmp_path):
    client = _client(
        tmp_path,
        transcription_handler=_transcribes_to("good morning"),
        completions=_EchoCompletions(),
    )

    resp = client.post("/agent/chat/s-1", files=_audio_file(content_type="application/octet-stream"))

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.content == b"AI Response: Nice to hear from you."

    body = client.get("/agent/chat/s-1/history").json()
    assert body["sessionId"] == "s-1"
    assert [(m["role"], m["content"]) for m in body["messages"]] == [
        ("user", "good morning"),
        ("assistant", "Nice to hear from you."),
    ]
    assert all(m["timestamp"] for m in body["messages"])


def test_model_outage_with_keyword_fallback(tmp_path):
    class _Unreachable:
        async def create(self, **kwargs):  # noqa: ANN003
            raise openai.APIConnectionError(request=httpx.Request("POST", "https://llm.test"))

    client = _client(
        tmp_path,
        transcription_handler=_transcribes_to("thank you very much"),
        completions=_Unreachable(),
    )

    resp = client.post("/agent/chat/s-2", files=_audio_file())

    assert resp.content == b"AI Response: You're welcome! Is there anything else I can help you with?"


def test_history_of_unknown_session_is_empty(down_client):
    resp = down_client.get("/agent/chat/new-session/history")

    assert resp.status_code == 200
    assert resp.json() == {"sessionId": "new-session", "messages": [], "messageCount": 0}


def test_clearing_unknown_session_succeeds(down_client):
    resp = down_client.delete("/agent/chat/xyz/history")

    assert resp.status_code == 200
    assert resp.json() == {"message": "Chat history cleared", "sessionId": "xyz"}


def test_clear_removes_history(down_client):
    down_client.post("/agent/chat/abc", files=_audio_file())
    down_client.delete("/agent/chat/abc/history")

    assert down_client.get("/agent/chat/abc/history").json()["messageCount"] == 0


def test_health_reports_ok_when_configured(down_client):
    resp = down_client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "OK", "message": "AI Voice Agent is running with all APIs configured"}


def test_health_is_degraded_without_credentials(tmp_path):
    client = _client(
        tmp_path,
        transcription_handler=_services_down,
        completions=_FailingCompletions(),
        assembly_api_key=None,
        gemini_api_key="",
    )

    resp = client.get("/health")

    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "DEGRADED"
    assert body["errors"] == ["GEMINI_API_KEY is not configured", "ASSEMBLY_API_KEY is not configured"]


def test_unknown_route_is_json_404(down_client):
    resp = down_client.get("/does/not/exist")

    assert resp.status_code == 404
    assert resp.json() == {"error": "Endpoint not found", "type": "NOT_FOUND"}


def test_wrong_method_is_json_405(down_client):
    resp = down_client.put("/agent/chat/abc/history")

    assert resp.status_code == 405
    assert resp.json() == {"error": "Method not allowed", "type": "METHOD_NOT_ALLOWED"}


def test_unexpected_errors_become_internal_error(tmp_path):
    class _ExplodingOrchestrator:
        store = SessionStore()

        async def handle_audio(self, session_id, audio_path):  # noqa: ANN001
            raise RuntimeError("kaboom")

    config = _settings(tmp_path)
    client = TestClient(create_app(config, orchestrator=_ExplodingOrchestrator()), raise_server_exceptions=False)

    resp = client.post("/agent/chat/abc", files=_audio_file())

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "type": "INTERNAL_ERROR"}
    # The spooled upload is removed even though processing crashed.
    assert list(Path(config.upload_dir).iterdir()) == []


def test_streaming_connection_records_audio(down_client, tmp_path):
    chunk = b"\x00" * 2048
    with down_client.websocket_connect("/ws") as ws:
        established = ws.receive_json()
        assert established["type"] == "session_established"
        session_id = established["sessionId"]
        assert session_id.startswith("ws_session_")

        ws.send_json({"type": "recording_started"})
        assert ws.receive_json() == {
            "type": "recording_confirmed",
            "sessionId": session_id,
            "message": "Recording confirmed, ready to receive audio",
        }

        ws.send_bytes(chunk)
        ack = ws.receive_json()
        assert ack["type"] == "audio_received"
        assert ack["chunkSize"] == len(chunk)
        assert ack["timestamp"].endswith("Z")

        ws.send_json({"type": "recording_stopped"})
        saved = ws.receive_json()
        assert saved["type"] == "recording_saved"
        saved_path = Path(saved["filePath"])

        ws.send_bytes(b"late")
        assert ws.receive_json()["type"] == "error"

    assert saved_path.name == f"streaming_audio_{session_id}.webm"
    assert saved_path.read_bytes() == chunk


def test_streaming_rejects_malformed_control_frames(down_client):
    with down_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("{not json")
        frame = ws.receive_json()

    assert frame["type"] == "error"
    assert frame["error"] == "Failed to process audio data"
    assert frame["details"]


def test_streaming_discards_tiny_recordings(down_client, tmp_path):
    with down_client.websocket_connect("/ws") as ws:
        session_id = ws.receive_json()["sessionId"]
        ws.send_bytes(b"blip")
        ws.receive_json()

    assert not (tmp_path / "uploads" / f"streaming_audio_{session_id}.webm").exists()
