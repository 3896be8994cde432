"""
router.py — Lobby REST Endpoints
================================
Lobby creation and snapshot lookup. Joining and everything after happens on
the WebSocket.
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from recast.apps.lobby import service
from recast.apps.lobby.schema import LobbyCreateRequest, LobbyResponse
from recast.core.engine import LobbyEngine

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════
# ROUTER SETUP
# ═══════════════════════════════════════════════════

router = APIRouter(prefix="/api/lobby", tags=["lobby"])


def get_engine(request: Request) -> LobbyEngine:
    return request.app.state.engine


# ═══════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════

@router.post("", response_model=LobbyResponse, status_code=status.HTTP_201_CREATED)
async def create_lobby_endpoint(req: LobbyCreateRequest, engine: LobbyEngine = Depends(get_engine)):
    """
    Create a new lobby.

    Returns a unique 4-letter code; the creator is joined as host.

    Returns:
        201: Lobby created
        422: Invalid name / playerId
    """
    return await service.create_lobby(engine, req.player_id, req.name)


@router.get("/{lobby_code}", response_model=LobbyResponse)
async def get_lobby_endpoint(lobby_code: str, engine: LobbyEngine = Depends(get_engine)):
    """
    Current lobby snapshot.

    Returns:
        200: Lobby snapshot
        404: lobby_not_found
    """
    return await service.get_lobby(engine, lobby_code)
