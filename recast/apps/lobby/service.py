"""
service.py — Lobby Business Logic
=================================
REST-side lobby operations. Every state change still goes through the
LobbyEngine; this module only shapes the responses.
"""

import logging

from recast.core.engine import LobbyEngine
from recast.core.models import StoredLobby

logger = logging.getLogger(__name__)


def _to_response(record: StoredLobby) -> dict:
    return {
        "code": record.state.code,
        "version": record.version,
        "state": record.state.dump(),
    }


async def create_lobby(engine: LobbyEngine, player_id: str, name: str) -> dict:
    """
    Create a lobby with a fresh code, `player_id` joined as host.

    Returns:
        {"code", "version", "state"}
    """
    record = await engine.create_lobby(player_id, name)
    return _to_response(record)


async def get_lobby(engine: LobbyEngine, code: str) -> dict:
    """Raises LobbyNotFound for unknown codes."""
    record = await engine.snapshot(code)
    return _to_response(record)
