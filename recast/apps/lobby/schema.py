"""
schema.py — Lobby Request/Response Models
=========================================
Pydantic models for the lobby REST endpoints.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from recast.core.intents import clean_player_name


# ═══════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════

class LobbyCreateRequest(BaseModel):
    """
    New lobby request. The creator joins as host.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"playerId": "p-1", "name": "Alice"}},
    )

    player_id: str = Field(..., min_length=1, max_length=64, description="Client-generated player id")
    name: str = Field(..., description="Display name of the host")

    @field_validator("name")
    @classmethod
    def _clean_name(cls, v: str) -> str:
        return clean_player_name(v)


# ═══════════════════════════════════════════════════
# RESPONSE MODELS
# ═══════════════════════════════════════════════════

class LobbyResponse(BaseModel):
    """
    Versioned lobby snapshot, same shape as the WebSocket `state` message.
    """
    code: str = Field(..., description="4-letter lobby code (ABCD)")
    version: int = Field(..., description="Committed lobby version")
    state: dict = Field(..., description="LobbyState, camelCase fields")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "QXZT",
                "version": 1,
                "state": {"code": "QXZT", "phase": "lobby", "players": []},
            }
        }
    )
