from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from checker import __version__
from checker.agent import ChecklistFetcher, ClientFactory, SecurityCheckHandler, default_client_factory
from checker.core.models import ChatRequest
from checker.errors import CheckerError
from checker.participant import ChatParticipant, ParticipantRegistry
from checker.stream import EventResponseStream, RecordingResponseStream
from checker.tools.checklist import fetch_checklist
from config.settings import Settings, get_settings


logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s - %(message)s")
logger = logging.getLogger("security_checker")

router = APIRouter()


def _registry(request: Request) -> ParticipantRegistry:
    return request.app.state.registry


async def _event_stream(participant: ChatParticipant, req: ChatRequest) -> AsyncIterator[str]:
    stream = EventResponseStream()
    cancel = asyncio.Event()

    async def run() -> None:
        try:
            result = await participant.handle(req, stream, cancel)
            stream.done(result.fragments, result.cancelled, result.reference)
        except CheckerError as exc:
            stream.error(exc)
        finally:
            stream.close()

    task = asyncio.create_task(run())
    try:
        async for frame in stream.events():
            yield frame
    finally:
        # Client went away or stream finished; stop at the next fragment.
        cancel.set()
        await task


@router.post("/chat/{participant_id}")
async def chat(participant_id: str, req: ChatRequest, request: Request):
    participant = _registry(request).get(participant_id)
    if participant is None:
        raise HTTPException(status_code=404, detail=f"Unknown chat participant: {participant_id}")

    logger.info(
        "Incoming chat: participant=%s history_turns=%s active_document=%s stream=%s",
        participant_id,
        len(req.history),
        req.active_document is not None,
        req.stream,
    )

    if req.stream:
        return StreamingResponse(_event_stream(participant, req), media_type="text/event-stream")

    stream = RecordingResponseStream()
    result = await participant.handle(req, stream, asyncio.Event())
    logger.info("Model responded with %s fragments and %s chars", result.fragments, len(stream.text()))
    return {
        "markdown": stream.text(),
        "fragments": result.fragments,
        "references": stream.references,
        "cancelled": result.cancelled,
        "reference": result.reference,
    }


@router.get("/participants")
def participants(request: Request) -> Dict[str, Any]:
    return {"participants": _registry(request).ids()}


@router.get("/health")
def health():
    return {"status": "ok"}


async def checker_error_handler(request: Request, exc: CheckerError):
    logger.error(
        "Chat request failed: code=%s path=%s message=%s",
        exc.error_code.value,
        request.url.path,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_response()})


def create_app(
    settings: Optional[Settings] = None,
    *,
    fetcher: ChecklistFetcher = fetch_checklist,
    client_factory: ClientFactory = default_client_factory,
) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level)

    app = FastAPI(title="Security Checker Chat Participant", version=__version__)

    # CORS: allow local editor webviews during development
    if settings.is_development:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    registry = ParticipantRegistry()
    handler = SecurityCheckHandler(settings, fetcher=fetcher, client_factory=client_factory)
    registry.create_chat_participant(settings.participant_id, handler)

    app.state.settings = settings
    app.state.registry = registry
    app.add_exception_handler(CheckerError, checker_error_handler)
    app.include_router(router)
    logger.info(
        "Config: model=%s variant=%s key_set=%s checklist=%s/%s",
        settings.gemini_model,
        handler.variant.name,
        bool(settings.google_api_key),
        settings.checklist_bucket or "-",
        settings.checklist_blob or "-",
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
