"""
WebSocket Gateway - FastAPI transport for the session core

Wire format (both directions): {"event": "<name>", "data": {...}}

Endpoints:
- /ws          client sessions (join-call, chat-message, video-frame, ...)
- /ws/observe  monitoring dashboards; receive emergency-escalated broadcasts
- /health      liveness and active session count
- /metrics     Prometheus exposition
- /sessions/{session_id}/incidents, /incidents/{incident_id}/resolve

Each inbound event is handled in its own task so a slow classification on
one session never blocks the socket's read loop. Ordering within a session
is kept by the orchestrator's per-session lock.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel

from safecall import __version__
from safecall.config.settings import Config, config
from safecall.controllers.session_orchestrator import SessionOrchestrator
from safecall.models.events import DISCONNECT, ERROR, OBSERVERS_ROOM
from safecall.services.factory import build_orchestrator
from safecall.services.interfaces import EventSink

logger = logging.getLogger(__name__)


class ConnectionHub(EventSink):
    """Registry of open sockets and broadcast rooms."""

    def __init__(self):
        self._connections: dict[str, WebSocket] = {}
        self._rooms: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, websocket: WebSocket, rooms: tuple[str, ...] = ()) -> str:
        connection_id = uuid4().hex
        self._connections[connection_id] = websocket
        for room in rooms:
            self._rooms.setdefault(room, set()).add(connection_id)
        logger.info(f"[ConnectionHub] Client connected: {connection_id}")
        return connection_id

    def unregister(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        for members in self._rooms.values():
            members.discard(connection_id)
        logger.info(f"[ConnectionHub] Client disconnected: {connection_id}")

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            logger.debug(f"[ConnectionHub] {event} for closed connection {connection_id} dropped")
            return
        await websocket.send_json({"event": event, "data": payload})

    async def broadcast(
        self,
        room: str,
        event: str,
        payload: dict[str, Any],
        exclude: Optional[str] = None,
    ) -> None:
        for connection_id in self.members(room):
            if connection_id == exclude:
                continue
            try:
                await self.send(connection_id, event, payload)
            except Exception as e:
                logger.warning(f"[ConnectionHub] Broadcast of {event} to {connection_id} failed: {e}")


class ResolveRequest(BaseModel):
    notes: str = ""


def create_app(
    orchestrator: Optional[SessionOrchestrator] = None,
    hub: Optional[ConnectionHub] = None,
    cfg: Optional[Config] = None,
) -> FastAPI:
    """
    Build the gateway app.

    Args:
        orchestrator: Pre-wired orchestrator; its sink must be `hub`.
        hub: Connection registry; a fresh one by default.
        cfg: Configuration; the global config by default.
    """
    cfg = cfg if cfg is not None else config
    hub = hub if hub is not None else ConnectionHub()
    if orchestrator is None:
        orchestrator = build_orchestrator(hub, cfg)

    app = FastAPI(
        title="SafeCall - Session Gateway",
        version=__version__,
        description="Real-time wellness call sessions with threat escalation",
    )
    app.state.hub = hub
    app.state.orchestrator = orchestrator

    if cfg.gateway.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.on_event("startup")
    async def startup_event():
        await orchestrator.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await orchestrator.stop()

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "activeSessions": len(orchestrator.store),
            "connections": len(hub),
            "ts": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/metrics")
    async def metrics():
        return Response(content=orchestrator.metrics.export(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/sessions/{session_id}/incidents")
    async def list_incidents(session_id: str):
        return [incident.model_dump(mode="json") for incident in orchestrator.incidents_for(session_id)]

    @app.post("/incidents/{incident_id}/resolve")
    async def resolve_incident(incident_id: str, request: ResolveRequest):
        try:
            incident = await orchestrator.resolve_incident(incident_id, request.notes)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
        return incident.model_dump(mode="json")

    @app.websocket("/ws")
    async def session_socket(websocket: WebSocket):
        await websocket.accept()
        connection_id = hub.register(websocket)
        pending: set[asyncio.Task] = set()
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    await hub.send(connection_id, ERROR, {"message": "Frames must be JSON"})
                    continue
                event = frame.get("event") if isinstance(frame, dict) else None
                if not isinstance(event, str) or not event:
                    await hub.send(connection_id, ERROR, {"message": "Missing event name"})
                    continue

                task = asyncio.create_task(orchestrator.handle_event(event, frame.get("data"), connection_id))
                pending.add(task)
                task.add_done_callback(pending.discard)
        except WebSocketDisconnect as e:
            logger.info(f"[Gateway] Connection {connection_id} closed (code={e.code})")
        finally:
            hub.unregister(connection_id)
            await orchestrator.handle_event(DISCONNECT, {}, connection_id)

    @app.websocket("/ws/observe")
    async def observer_socket(websocket: WebSocket):
        await websocket.accept()
        connection_id = hub.register(websocket, rooms=(OBSERVERS_ROOM,))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            hub.unregister(connection_id)

    return app
