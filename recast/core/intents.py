"""
intents.py — Lobby Intents
==========================
Every mutation of a lobby is an intent. Client-initiable intents arrive over
the WebSocket (`{"type": "submit_matches", "matches": {...}}`); internal ones
are raised by the round timer and the option generator.

USAGE:
------
    intent = parse_client_intent({"type": "join", "name": "Alice"})
    await engine.dispatch("ABCD", intent, actor="p-1")
"""

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter, field_validator

from recast.core.models import CamelModel, CreativityMode


def clean_player_name(v: str) -> str:
    """Display-name rule shared by JOIN and lobby creation."""
    v = v.strip()
    if not 1 <= len(v) <= 32:
        raise ValueError("name must be 1-32 characters")
    if not v.isprintable():
        raise ValueError("name must be printable")
    return v


class Intent(CamelModel):
    type: str
    # echoed by some clients; must match the connection binding when present
    player_id: str | None = None


# ═══════════════════════════════════════════════════
# CLIENT → SERVER
# ═══════════════════════════════════════════════════

class Join(Intent):
    type: Literal["join"] = "join"
    name: str

    @field_validator("name")
    @classmethod
    def _clean_name(cls, v: str) -> str:
        return clean_player_name(v)


class StartGame(Intent):
    type: Literal["start_game"] = "start_game"


class SubmitPrompt(Intent):
    type: Literal["submit_prompt"] = "submit_prompt"
    prompt: str = Field(..., max_length=200)
    creativity: CreativityMode = CreativityMode.NORMAL

    @field_validator("prompt")
    @classmethod
    def _clean_prompt(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("prompt cannot be empty")
        return v


class SubmitMatches(Intent):
    type: Literal["submit_matches"] = "submit_matches"
    matches: dict[str, str]


class React(Intent):
    type: Literal["react"] = "react"
    option: str
    emoji: str = Field(..., min_length=1, max_length=8)


class SetResultsIndex(Intent):
    type: Literal["set_results_index"] = "set_results_index"
    index: int


class ReadyNext(Intent):
    type: Literal["ready_next"] = "ready_next"


class NextRound(Intent):
    type: Literal["next_round"] = "next_round"


class Leave(Intent):
    type: Literal["leave"] = "leave"


class Ping(Intent):
    type: Literal["ping"] = "ping"
    timestamp: float | None = None


ClientIntent = Annotated[
    Union[
        Join,
        StartGame,
        SubmitPrompt,
        SubmitMatches,
        React,
        SetResultsIndex,
        ReadyNext,
        NextRound,
        Leave,
        Ping,
    ],
    Field(discriminator="type"),
]

_client_intent_adapter: TypeAdapter = TypeAdapter(ClientIntent)


def parse_client_intent(data: dict) -> Intent:
    """Validate a raw client message. Raises pydantic.ValidationError."""
    return _client_intent_adapter.validate_python(data)


# ═══════════════════════════════════════════════════
# INTERNAL EVENTS
# ═══════════════════════════════════════════════════

class OptionsReady(Intent):
    type: Literal["options_ready"] = "options_ready"
    generation_id: int
    options: list[str]


class GenerationFailedEvent(Intent):
    type: Literal["generation_failed"] = "generation_failed"
    generation_id: int
    reason: str = ""


class TimeUp(Intent):
    type: Literal["time_up"] = "time_up"
    round: int
