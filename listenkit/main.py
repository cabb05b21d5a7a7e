"""
FastAPI app: thin command surface over the conversation orchestrator.

POST /api/commands/{command}  body = command payload (JSON object, optional)
WebSocket /ws/events          server pushes every event as {"type": ..., "payload": {...}};
                              client may send {"type": "mic_audio", "data": <base64 PCM16 mono>}
                              or {"type": "command", "command": ..., "payload": {...}}.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Body, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from listenkit.auth import AuthState
from listenkit.commands import Command, CommandDispatcher
from listenkit.config import Settings, get_settings
from listenkit.events import EventBus
from listenkit.llm import OpenAIChatStreamer
from listenkit.logging_setup import configure_logging
from listenkit.orchestrator import ConversationOrchestrator
from listenkit.persistence import create_repository
from listenkit.screenshot import MssScreenshotCapturer
from listenkit.stt import create_stt_provider
from listenkit.transcript.models import Speaker
from listenkit.transcript.presenter import TranscriptPresenter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    orchestrator: ConversationOrchestrator
    presenter: TranscriptPresenter
    dispatcher: CommandDispatcher


def build_services(settings: Settings) -> Services:
    """Wire the production collaborators. Everything is constructed explicitly, no globals."""
    orchestrator = ConversationOrchestrator(
        stt_provider=create_stt_provider(settings),
        llm_provider=OpenAIChatStreamer(settings),
        repository=create_repository(settings),
        auth=AuthState(settings),
        settings=settings,
        screenshot_capturer=MssScreenshotCapturer(),
        bus=EventBus(),
    )
    return wire(orchestrator, settings)


def wire(orchestrator: ConversationOrchestrator, settings: Settings) -> Services:
    presenter = TranscriptPresenter(settings)
    orchestrator.bus.subscribe(presenter.handle_event)
    return Services(orchestrator, presenter, CommandDispatcher(orchestrator, presenter))


def create_app(
    settings: Settings | None = None,
    services_factory: Callable[[Settings], Services] = build_services,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        s = settings or get_settings()
        configure_logging(s)
        app.state.services = services_factory(s)
        logger.info("listenkit ready (stt=%s, channels=%s)", s.STT_PROVIDER, s.LISTEN_CHANNELS)
        yield
        await app.state.services.orchestrator.shutdown()
        app.state.services = None

    app = FastAPI(
        title="listenkit",
        description="Continuous listening and conversation orchestration",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post("/api/commands/{command}")
    async def run_command(command: str, request: Request, payload: dict[str, Any] | None = Body(None)) -> Any:
        try:
            cmd = Command(command)
        except ValueError:
            raise HTTPException(status_code=404, detail=f"Unknown command: {command}")
        services: Services = request.app.state.services
        try:
            return await services.dispatcher.dispatch(cmd, payload)
        except ValueError as e:
            # pydantic ValidationError is a ValueError
            raise HTTPException(status_code=422, detail=str(e))

    @app.websocket("/ws/events")
    async def events(websocket: WebSocket) -> None:
        await websocket.accept()
        services: Services = websocket.app.state.services
        queue = services.orchestrator.bus.subscribe_queue()

        async def push_events() -> None:
            while True:
                event = await queue.get()
                await websocket.send_json(event.to_json())

        sender = asyncio.create_task(push_events())
        try:
            while True:
                message = await websocket.receive_json()
                await _handle_client_message(websocket, services, message)
        except WebSocketDisconnect:
            pass
        finally:
            services.orchestrator.bus.unsubscribe_queue(queue)
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    return app


async def _handle_client_message(websocket: WebSocket, services: Services, message: dict[str, Any]) -> None:
    kind = message.get("type")
    if kind == "mic_audio":
        await services.orchestrator.push_audio(Speaker.LOCAL, message.get("data") or "")
    elif kind == "command":
        try:
            cmd = Command(message.get("command"))
        except ValueError:
            await websocket.send_json({"type": "command-result", "command": message.get("command"), "error": "unknown_command"})
            return
        result = await services.dispatcher.dispatch(cmd, message.get("payload"))
        await websocket.send_json({"type": "command-result", "command": cmd.value, "result": result})
    else:
        logger.debug("Ignoring client message of type %r", kind)


app = create_app()


def run() -> None:
    """Console entry: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("listenkit.main:app", host="127.0.0.1", port=8000)
