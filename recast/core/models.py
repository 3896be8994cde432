"""
models.py — Lobby Data Model
============================
Canonical game state owned by the server. Serialized with camelCase field
names (`playerId`, `currentRound`, ...) both on the wire and in storage.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Phase(str, Enum):
    LOBBY = "lobby"
    PROMPT = "prompt"
    MATCHING = "matching"
    RESULTS = "results"
    GAME_OVER = "gameOver"


class CreativityMode(str, Enum):
    NORMAL = "normal"
    CREATIVE = "creative"
    CRAZY = "crazy"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Player(CamelModel):
    player_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=32)
    score: int = Field(default=0, ge=0)
    points_history: list[int] = Field(default_factory=list)
    is_host: bool = False
    # monotonic join order; turn order lives in LobbyState.players
    join_seq: int = 0


class LobbyState(CamelModel):
    code: str = Field(..., pattern=r"^[A-Z]{4}$")
    phase: Phase = Phase.LOBBY
    players: list[Player] = Field(default_factory=list)
    current_round: int = 0
    total_rounds: int = 0
    prompt_player_id: str | None = None
    current_prompt: str | None = None
    creativity: CreativityMode | None = None
    options: list[str] = Field(default_factory=list)
    submissions: dict[str, dict[str, str]] = Field(default_factory=dict)
    results: dict[str, str | None] | None = None
    ready_players: list[str] = Field(default_factory=list)
    round_start_time: float | None = None
    reactions: dict[str, dict[str, int]] = Field(default_factory=dict)
    current_results_index: int = 0

    # generation bookkeeping
    generation_pending: bool = False
    generation_id: int = 0

    next_join_seq: int = 0
    empty_since: float | None = None

    # ── Lookups ──────────────────────────────────────

    @property
    def player_ids(self) -> list[str]:
        return [p.player_id for p in self.players]

    def get_player(self, player_id: str) -> Player | None:
        for p in self.players:
            if p.player_id == player_id:
                return p
        return None

    def has_player(self, player_id: str) -> bool:
        return self.get_player(player_id) is not None

    @property
    def host(self) -> Player | None:
        for p in self.players:
            if p.is_host:
                return p
        return None

    def matching_deadline(self, seconds_per_player: float) -> float | None:
        if self.round_start_time is None:
            return None
        return self.round_start_time + seconds_per_player * len(self.players)


class StoredLobby(CamelModel):
    """A LobbyState plus its CAS version and last-write timestamp."""
    version: int
    state: LobbyState
    updated_at: float
