"""FastAPI endpoints for session control, hint purchases and host event ingestion."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .config import load_settings
from .logging_config import configure_logging, get_logger
from .models import ChatEntry
from .runtime import BridgeRuntime, create_runtime
from .state import build_session_status, serialize_entry

logger = get_logger(__name__)


class ConnectRequest(BaseModel):
    host: str | None = Field(default=None, max_length=255)
    slot: str | None = Field(default=None, max_length=64)
    password: str | None = Field(default=None, max_length=255)


class ConnectResponse(BaseModel):
    connected: bool
    message: str
    status: dict[str, Any]


class SessionStatusResponse(BaseModel):
    status: dict[str, Any]


class HintPurchaseResponse(BaseModel):
    location_id: int
    status: dict[str, Any]


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)


class HostEventRequest(BaseModel):
    channel_id: int
    text: str = Field(max_length=2000)


class HostEventResponse(BaseModel):
    accepted: bool


class ChatEntriesResponse(BaseModel):
    entries: list[dict[str, Any]]


class ChatWebSocketHub:
    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)

    async def send_entry(self, websocket: WebSocket, entry: ChatEntry) -> None:
        await websocket.send_json({"type": "chat.entry", "entry": serialize_entry(entry)})

    async def broadcast_entry(self, entry: ChatEntry) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections):
            try:
                await self.send_entry(websocket, entry)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(websocket)


def _default_runtime() -> BridgeRuntime:
    settings = load_settings()
    configure_logging(level=settings.log_level, development=settings.is_development)
    return create_runtime(settings)


def create_app(runtime: BridgeRuntime | None = None) -> FastAPI:
    bridge = runtime if runtime is not None else _default_runtime()
    websocket_hub = ChatWebSocketHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        loop = asyncio.get_running_loop()
        tasks: set[asyncio.Task[None]] = set()

        def schedule_broadcast(entry: ChatEntry) -> None:
            task = loop.create_task(websocket_hub.broadcast_entry(entry))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

        def forward_entry(entry: ChatEntry) -> None:
            loop.call_soon_threadsafe(schedule_broadcast, entry)

        bridge.chat.add_listener(forward_entry)
        bridge.pipeline.start(loop)
        try:
            yield
        finally:
            await bridge.pipeline.stop()
            await bridge.session.disconnect()
            bridge.chat.remove_listener(forward_entry)

    app = FastAPI(title="Archipelago Token Bridge", version="0.1.0", lifespan=lifespan)
    app.state.runtime = bridge
    app.state.websocket_hub = websocket_hub

    def get_runtime() -> BridgeRuntime:
        return bridge

    def status_of(local: BridgeRuntime) -> dict[str, Any]:
        return build_session_status(local.session, local.hints)

    @app.get("/api/session", response_model=SessionStatusResponse)
    def get_session(local: BridgeRuntime = Depends(get_runtime)) -> SessionStatusResponse:
        return SessionStatusResponse(status=status_of(local))

    @app.post("/api/session/connect", response_model=ConnectResponse)
    async def connect_session(
        payload: ConnectRequest,
        local: BridgeRuntime = Depends(get_runtime),
    ) -> ConnectResponse:
        config = local.config_source.current()
        host = payload.host or config.host
        slot = payload.slot or config.slot
        if not slot:
            raise HTTPException(status_code=400, detail="Slot name is required")
        outcome = await local.session.connect(host=host, slot=slot, password=payload.password)
        return ConnectResponse(connected=outcome.connected, message=outcome.message, status=status_of(local))

    @app.post("/api/session/disconnect", response_model=SessionStatusResponse)
    async def disconnect_session(local: BridgeRuntime = Depends(get_runtime)) -> SessionStatusResponse:
        await local.session.disconnect()
        return SessionStatusResponse(status=status_of(local))

    @app.post("/api/hints/purchase", response_model=HintPurchaseResponse)
    async def purchase_hint(local: BridgeRuntime = Depends(get_runtime)) -> HintPurchaseResponse:
        attempt = await local.hints.attempt()
        if attempt.location_id is None:
            raise HTTPException(status_code=409, detail=attempt.reason)
        return HintPurchaseResponse(location_id=attempt.location_id, status=status_of(local))

    @app.post("/api/chat", response_model=SessionStatusResponse)
    async def send_chat(payload: ChatRequest, local: BridgeRuntime = Depends(get_runtime)) -> SessionStatusResponse:
        if not await local.session.say(payload.message):
            raise HTTPException(status_code=409, detail="You are not connected to a server.")
        return SessionStatusResponse(status=status_of(local))

    @app.get("/api/chat/recent", response_model=ChatEntriesResponse)
    def recent_chat(local: BridgeRuntime = Depends(get_runtime)) -> ChatEntriesResponse:
        return ChatEntriesResponse(entries=[serialize_entry(entry) for entry in local.chat.recent()])

    @app.post("/api/events", response_model=HostEventResponse)
    def ingest_event(payload: HostEventRequest, local: BridgeRuntime = Depends(get_runtime)) -> HostEventResponse:
        accepted = local.pipeline.on_event(channel_id=payload.channel_id, text=payload.text)
        return HostEventResponse(accepted=accepted)

    @app.websocket("/ws/chat")
    async def chat_ws(websocket: WebSocket) -> None:
        await websocket_hub.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(websocket)

    return app
