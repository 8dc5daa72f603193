"""WebSocket endpoint carrying one user session per connection."""

import json

from fastapi import APIRouter, WebSocket
from loguru import logger
from starlette.websockets import WebSocketDisconnect

from ..models import Outcome
from ..session.orchestrator import SessionOrchestrator

router = APIRouter()


async def _send_invalid(websocket: WebSocket, detail: str):
    await websocket.send_json({"type": "agent_result", "result": Outcome.failure(detail).to_wire()})


@router.websocket("/")
@router.websocket("/ws")
async def agent_socket(websocket: WebSocket):
    """Relay chat and CAPTCHA traffic between the browser UI and the orchestrator."""
    orchestrator: SessionOrchestrator = websocket.app.state.orchestrator
    await websocket.accept()
    session = orchestrator.connect(websocket)
    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            except KeyError:
                # Binary frame
                await _send_invalid(websocket, "Invalid websocket frame")
                continue
            try:
                payload = json.loads(raw)
            except ValueError:
                await _send_invalid(websocket, "Payload must be JSON")
                continue
            if not isinstance(payload, dict):
                await _send_invalid(websocket, "Payload must be a JSON object")
                continue
            await orchestrator.handle(session.session_id, payload)
    finally:
        await orchestrator.disconnect(session.session_id)
        logger.debug(f"[{session.session_id}] Socket closed")
