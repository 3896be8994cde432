"""
router.py — WebSocket Router
============================
The intent gateway: one socket per (lobby, player).

ENDPOINT:
---------
WS /ws/{lobby_code}/{player_id}

FLOW:
-----
1. Lobby lookup (unknown code → error + close 4404)
2. Register with the FanoutHub, send the current snapshot
3. Loop: validate JSON → intent → engine.dispatch
4. Rejected intents → error to this socket only
5. Disconnect → LEAVE after the reconnect grace period
"""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from recast.apps.ws.schema import ErrorEvent, PongEvent, StateEvent
from recast.apps.ws.service import FanoutHub, Subscriber
from recast.core.database import normalize_code
from recast.core.engine import LobbyEngine
from recast.core.errors import Forbidden, GameError, InvalidIntent, LobbyNotFound
from recast.core.intents import Leave, Ping, parse_client_intent

logger = logging.getLogger(__name__)

CLOSE_LOBBY_NOT_FOUND = 4404

# ═══════════════════════════════════════════════════
# ROUTER SETUP
# ═══════════════════════════════════════════════════

router = APIRouter(tags=["websocket"])


# ═══════════════════════════════════════════════════
# WEBSOCKET ENDPOINT
# ═══════════════════════════════════════════════════

@router.websocket("/ws/{lobby_code}/{player_id}")
async def websocket_endpoint(websocket: WebSocket, lobby_code: str, player_id: str):
    """
    URL Format:
        ws://localhost:8000/ws/{lobby_code}/{player_id}

    Client Message Format:
        {"type": "submit_matches", "matches": {"apple": "p-2", ...}}

    Server Message Format:
        {"type": "state", "version": 12, "state": {...}}
        {"type": "error", "code": "wrong_phase", "message": "..."}
    """
    engine: LobbyEngine = websocket.app.state.engine
    hub: FanoutHub = websocket.app.state.hub
    max_size = websocket.app.state.settings.WS_MESSAGE_MAX_SIZE
    code = normalize_code(lobby_code)
    logger.info(f"🔌 WebSocket connection attempt: {code}/{player_id}")

    # ═══ 1. LOBBY LOOKUP ═══
    try:
        await engine.snapshot(code)
    except LobbyNotFound as e:
        await websocket.accept()
        await websocket.send_json(ErrorEvent.from_error(e).model_dump())
        await websocket.close(code=CLOSE_LOBBY_NOT_FOUND)
        return

    # ═══ 2. SUBSCRIBE + INITIAL SNAPSHOT ═══
    subscriber = await hub.connect(code, player_id, websocket)
    engine.cancel_leave(code, player_id)
    # read after registering: commits during the handshake were not published to us
    try:
        snapshot = await engine.snapshot(code)
    except LobbyNotFound as e:
        # purged during the handshake
        hub.disconnect(code, player_id, subscriber)
        await websocket.send_json(ErrorEvent.from_error(e).model_dump())
        await websocket.close(code=CLOSE_LOBBY_NOT_FOUND)
        return
    subscriber.offer_state(snapshot.version, StateEvent.from_record(snapshot).model_dump())

    # ═══ 3. MESSAGE LOOP ═══
    try:
        while True:
            raw = await websocket.receive_text()
            if len(raw) > max_size:
                hub.send_error(code, player_id, InvalidIntent(f"Message exceeds {max_size} bytes"))
                continue
            await handle_client_message(engine, hub, code, player_id, raw)

    except WebSocketDisconnect:
        logger.info(f"🔌 WebSocket disconnected: {code}/{player_id}")
        _on_disconnect(engine, hub, code, player_id, subscriber)

    except Exception as e:
        logger.error(f"❌ WebSocket error {code}/{player_id}: {e}")
        _on_disconnect(engine, hub, code, player_id, subscriber)


def _on_disconnect(engine: LobbyEngine, hub: FanoutHub, code: str, player_id: str, subscriber: Subscriber) -> None:
    # a replaced connection must not schedule a leave for the live one
    current = hub.active_connections.get(code, {}).get(player_id)
    if current is not None and current is not subscriber:
        return
    hub.disconnect(code, player_id, subscriber)
    engine.schedule_leave(code, player_id)


# ═══════════════════════════════════════════════════
# MESSAGE HANDLING
# ═══════════════════════════════════════════════════

async def handle_client_message(
    engine: LobbyEngine,
    hub: FanoutHub,
    code: str,
    player_id: str,
    raw: str,
) -> None:
    """
    Validate one client message and forward it to the lobby actor.

    The committed snapshot reaches this client through the hub like everyone
    else's; only errors are answered here.
    """
    try:
        data = json.loads(raw)
    except ValueError:
        hub.send_error(code, player_id, InvalidIntent("Message must be a JSON object"))
        return

    try:
        intent = parse_client_intent(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        hub.send_error(code, player_id, InvalidIntent(first.get("msg", "Malformed message")))
        return

    if intent.player_id is not None and intent.player_id != player_id:
        hub.send_error(code, player_id, Forbidden("playerId does not match this connection"))
        return

    # ═══ PING ═══
    if isinstance(intent, Ping):
        hub.send_to(code, player_id, PongEvent(timestamp=intent.timestamp).model_dump())
        return

    logger.info(f"📥 {code}/{player_id}: {intent.type}")

    # ═══ LEAVE (explicit, no grace period) ═══
    if isinstance(intent, Leave):
        engine.cancel_leave(code, player_id)

    try:
        await engine.dispatch(code, intent, actor=player_id)
    except GameError as e:
        logger.info(f"🚫 {code}/{player_id}: {intent.type} rejected ({e.code})")
        hub.send_error(code, player_id, e)
