"""
schema.py — WebSocket Message Envelopes
=======================================
Server → Client messages. Client → Server messages are the intents in
`recast.core.intents` (validated with `parse_client_intent`).

MESSAGE FORMAT:
---------------
    {"type": "state", "version": 7, "state": {...LobbyState...}}
    {"type": "error", "code": "not_your_turn", "message": "..."}
    {"type": "pong", "timestamp": 1700000000.0}
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from recast.core.errors import GameError
from recast.core.models import StoredLobby


class StateEvent(BaseModel):
    """Full snapshot of a committed lobby version."""
    type: Literal["state"] = "state"
    version: int = Field(description="Monotonic lobby version")
    state: dict = Field(description="LobbyState, camelCase fields")

    @classmethod
    def from_record(cls, record: StoredLobby) -> "StateEvent":
        return cls(version=record.version, state=record.state.dump())


class ErrorEvent(BaseModel):
    """Sent only to the client whose intent failed."""
    type: Literal["error"] = "error"
    code: str = Field(description="lobby_not_found | lobby_full | name_taken | ...")
    message: str = ""

    @classmethod
    def from_error(cls, err: GameError) -> "ErrorEvent":
        return cls(code=err.code, message=err.message)


class PongEvent(BaseModel):
    type: Literal["pong"] = "pong"
    timestamp: Optional[float] = None
