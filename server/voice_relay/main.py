"""FastAPI application entrypoint for the voice relay."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings, validate_api_config
from .errors import VoiceAgentError
from .models import schemas
from .routers import chat, streaming
from .services.orchestration import ConversationOrchestrator
from .services.response_generation import ResponseGenerator
from .services.session_store import SessionStore
from .services.transcription import TranscriptionService

logger = logging.getLogger(__name__)


def build_orchestrator(config: Settings, store: SessionStore) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        store=store,
        transcriber=TranscriptionService(config=config),
        generator=ResponseGenerator(config=config),
        serialize_sessions=config.serialize_sessions,
    )


def _error(status_code: int, message: str, error_type: str) -> JSONResponse:
    body = schemas.ErrorResponse(error=message, type=error_type)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _voice_agent_error_handler(request: Request, exc: VoiceAgentError) -> JSONResponse:
    logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.type)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return _error(400, "Invalid form data or missing audio file", "VALIDATION_ERROR")


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 400:
        # Multipart parse failures surface here rather than as RequestValidationError.
        logger.warning("Rejected unparseable request to %s: %s", request.url.path, exc.detail)
        return _error(400, "Invalid form data or missing audio file", "VALIDATION_ERROR")
    if exc.status_code == 404:
        return _error(404, "Endpoint not found", "NOT_FOUND")
    if exc.status_code == 405:
        return _error(405, "Method not allowed", "METHOD_NOT_ALLOWED")
    return _error(exc.status_code, str(exc.detail), "HTTP_ERROR")


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error", "INTERNAL_ERROR")


def create_app(
    config: Optional[Settings] = None,
    *,
    orchestrator: Optional[ConversationOrchestrator] = None,
) -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    config = config or get_settings()
    store = orchestrator.store if orchestrator is not None else SessionStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        api_errors = validate_api_config(config)
        if api_errors:
            logger.warning("API configuration warnings:")
            for error in api_errors:
                logger.warning("  - %s", error)
            logger.warning("The application will use fallback responses for failed APIs.")
        else:
            logger.info("All APIs are properly configured")
        yield

    application = FastAPI(
        title="Voice Relay",
        description="Relays recorded speech to transcription and a language model, keeping per-session history.",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = config
    application.state.session_store = store
    application.state.orchestrator = orchestrator or build_orchestrator(config, store)

    application.add_exception_handler(VoiceAgentError, _voice_agent_error_handler)
    application.add_exception_handler(RequestValidationError, _request_validation_handler)
    application.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    application.add_exception_handler(Exception, _unhandled_error_handler)

    application.include_router(chat.router)
    application.include_router(streaming.router)

    @application.get("/health", response_model=schemas.HealthResponse, response_model_exclude_none=True)
    async def health():
        api_errors = validate_api_config(config)
        if api_errors:
            body = schemas.HealthResponse(
                status="DEGRADED",
                message="AI Voice Agent is running but some APIs are not configured",
                errors=api_errors,
            )
            return JSONResponse(status_code=503, content=body.model_dump())
        return schemas.HealthResponse(status="OK", message="AI Voice Agent is running with all APIs configured")

    @application.get("/")
    async def root() -> dict[str, str]:
        """Lightweight health endpoint for service discovery."""
        return {"service": "voice-relay", "status": "ok"}

    return application


logging.basicConfig(level=get_settings().log_level.upper())

app = create_app()


def run() -> None:
    import uvicorn

    config = get_settings()
    uvicorn.run(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    run()
