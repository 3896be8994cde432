"""
reducer.py — Lobby Phase Machine
================================
Pure transition function:

    apply(state, intent, ctx) -> Transition(state, effects)

No I/O happens here. Anything that has to leave the critical section
(option generation, round timers, per-player notifications) is returned as an
`Effect` and executed by the engine after the new state has been committed.

Validation failures raise `GameError` subclasses and leave the input state
untouched. Stale internal events (old round timer, superseded generation) are
absorbed: the returned state equals the input and the engine skips the commit.

    lobby ──start_game──▶ prompt ──options_ready──▶ matching
                            ▲                           │ all submitted | time_up
                            │ next_round                ▼
                            └──────────────────────── results ──next_round(final)──▶ gameOver
"""

import random
from dataclasses import dataclass, field
from typing import Callable

from recast.core import intents as it
from recast.core.errors import (
    GameError,
    GenerationFailed,
    InvalidIntent,
    InvalidSubmission,
    LobbyFull,
    NameTaken,
    NotEnoughPlayers,
    NotHost,
    NotInLobby,
    NotYourTurn,
    WrongPhase,
)
from recast.core.models import LobbyState, Phase, Player
from recast.core.scoring import score

ROUND_PHASES = (Phase.PROMPT, Phase.MATCHING, Phase.RESULTS)


# ═══════════════════════════════════════════════════
# EFFECTS (run by the engine after commit)
# ═══════════════════════════════════════════════════

@dataclass
class Effect:
    pass


@dataclass
class StartGeneration(Effect):
    generation_id: int
    prompt: str
    player_count: int
    creativity: str
    prompt_player_id: str


@dataclass
class ArmTimer(Effect):
    round: int
    deadline: float


@dataclass
class DisarmTimer(Effect):
    round: int


@dataclass
class NotifyPlayer(Effect):
    player_id: str
    error: GameError


@dataclass
class Transition:
    state: LobbyState
    effects: list[Effect] = field(default_factory=list)


# ═══════════════════════════════════════════════════
# CONTEXT
# ═══════════════════════════════════════════════════

@dataclass
class Rules:
    max_players: int = 8
    min_players: int = 2
    seconds_per_player: float = 20.0
    allowed_reactions: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings) -> "Rules":
        return cls(
            max_players=settings.MAX_PLAYERS_PER_LOBBY,
            min_players=settings.MIN_PLAYERS,
            seconds_per_player=settings.MATCHING_SECONDS_PER_PLAYER,
            allowed_reactions=tuple(settings.ALLOWED_REACTIONS),
        )


@dataclass
class Context:
    actor: str | None
    now: float
    rules: Rules = field(default_factory=Rules)
    shuffle: Callable[[list], None] = random.shuffle


# ═══════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════

def apply(state: LobbyState, intent: it.Intent, ctx: Context) -> Transition:
    handler = _HANDLERS.get(type(intent))
    if handler is None:
        raise InvalidIntent(f"Unsupported intent: {intent.type}")
    s = state.model_copy(deep=True)
    t = Transition(state=s)
    handler(s, intent, ctx, t)
    return t


def new_lobby(code: str, host_id: str, host_name: str) -> LobbyState:
    state = LobbyState(code=code)
    t = apply(state, it.Join(name=host_name), Context(actor=host_id, now=0.0))
    return t.state


# ── Guards ───────────────────────────────────────────

def _require_phase(s: LobbyState, *phases: Phase) -> None:
    if s.phase not in phases:
        wanted = "/".join(p.value for p in phases)
        raise WrongPhase(f"Not allowed in phase '{s.phase.value}' (needs {wanted})")


def _require_member(s: LobbyState, ctx: Context) -> str:
    if ctx.actor is None or not s.has_player(ctx.actor):
        raise NotInLobby("You are not a player in this lobby")
    return ctx.actor


def _require_host(s: LobbyState, ctx: Context) -> str:
    actor = _require_member(s, ctx)
    if not s.get_player(actor).is_host:
        raise NotHost("Only the host can do that")
    return actor


def _require_prompt_player(s: LobbyState, ctx: Context) -> str:
    actor = _require_member(s, ctx)
    if actor != s.prompt_player_id:
        raise NotYourTurn("It is not your turn")
    return actor


# ── Shared transitions ───────────────────────────────

def _clear_round(s: LobbyState) -> None:
    s.current_prompt = None
    s.creativity = None
    s.options = []
    s.submissions = {}
    s.results = None
    s.ready_players = []
    s.round_start_time = None
    s.reactions = {}
    s.current_results_index = 0
    s.generation_pending = False


def _all_submitted(s: LobbyState) -> bool:
    return all(pid in s.submissions for pid in s.player_ids)


def _enter_results(s: LobbyState, t: Transition) -> None:
    results, players = score(s.submissions, s.players, s.current_round, s.options)
    s.results = results
    s.players = players
    s.phase = Phase.RESULTS
    s.round_start_time = None
    s.ready_players = []
    s.current_results_index = 0
    t.effects.append(DisarmTimer(round=s.current_round))


def _advance_round(s: LobbyState, t: Transition) -> None:
    s.current_round += 1
    _clear_round(s)
    if s.current_round >= s.total_rounds:
        s.phase = Phase.GAME_OVER
        s.prompt_player_id = None
        return
    s.phase = Phase.PROMPT
    s.prompt_player_id = s.players[s.current_round % len(s.players)].player_id


def _end_game(s: LobbyState, t: Transition) -> None:
    if s.phase == Phase.MATCHING:
        t.effects.append(DisarmTimer(round=s.current_round))
    _clear_round(s)
    s.phase = Phase.GAME_OVER
    s.prompt_player_id = None
    s.generation_id += 1


# ═══════════════════════════════════════════════════
# HANDLERS
# ═══════════════════════════════════════════════════

def _join(s: LobbyState, i: it.Join, ctx: Context, t: Transition) -> None:
    if ctx.actor is None:
        raise InvalidIntent("join requires a player id")
    if s.has_player(ctx.actor):
        # reconnect: no state change
        return
    _require_phase(s, Phase.LOBBY)
    if len(s.players) >= ctx.rules.max_players:
        raise LobbyFull(f"Lobby is full (max {ctx.rules.max_players} players)")
    folded = i.name.casefold()
    if any(p.name.casefold() == folded for p in s.players):
        raise NameTaken(f"Name '{i.name}' is already taken")

    s.players.append(
        Player(
            player_id=ctx.actor,
            name=i.name,
            is_host=s.host is None,
            join_seq=s.next_join_seq,
        )
    )
    s.next_join_seq += 1
    s.total_rounds = len(s.players) * 2
    s.empty_since = None


def _start_game(s: LobbyState, i: it.StartGame, ctx: Context, t: Transition) -> None:
    _require_phase(s, Phase.LOBBY)
    _require_host(s, ctx)
    if len(s.players) < ctx.rules.min_players:
        raise NotEnoughPlayers(f"Need at least {ctx.rules.min_players} players to start")

    ctx.shuffle(s.players)
    s.players = [p.model_copy(update={"score": 0, "points_history": []}) for p in s.players]
    _clear_round(s)
    s.phase = Phase.PROMPT
    s.current_round = 0
    s.total_rounds = len(s.players) * 2
    s.prompt_player_id = s.players[0].player_id


def _submit_prompt(s: LobbyState, i: it.SubmitPrompt, ctx: Context, t: Transition) -> None:
    _require_phase(s, Phase.PROMPT)
    actor = _require_prompt_player(s, ctx)

    s.current_prompt = i.prompt
    s.creativity = i.creativity
    s.generation_pending = True
    s.generation_id += 1
    t.effects.append(
        StartGeneration(
            generation_id=s.generation_id,
            prompt=i.prompt,
            player_count=len(s.players),
            creativity=i.creativity.value,
            prompt_player_id=actor,
        )
    )


def _options_ready(s: LobbyState, i: it.OptionsReady, ctx: Context, t: Transition) -> None:
    if s.phase != Phase.PROMPT or not s.generation_pending or i.generation_id != s.generation_id:
        return

    options = [o.strip() for o in i.options]
    if (
        len(options) != len(s.players)
        or any(not o for o in options)
        or len(set(options)) != len(options)
    ):
        # player count may have changed while the generator was running
        _generation_failed(
            s,
            it.GenerationFailedEvent(
                generation_id=i.generation_id,
                reason=f"Expected {len(s.players)} options, got {len(options)}",
            ),
            ctx,
            t,
        )
        return

    s.options = options
    s.generation_pending = False
    s.submissions = {}
    s.results = None
    s.reactions = {}
    s.ready_players = []
    s.current_results_index = 0
    s.phase = Phase.MATCHING
    s.round_start_time = ctx.now
    t.effects.append(
        ArmTimer(
            round=s.current_round,
            deadline=s.matching_deadline(ctx.rules.seconds_per_player),
        )
    )


def _generation_failed(
    s: LobbyState, i: it.GenerationFailedEvent, ctx: Context, t: Transition
) -> None:
    if s.phase != Phase.PROMPT or not s.generation_pending or i.generation_id != s.generation_id:
        return
    s.current_prompt = None
    s.creativity = None
    s.generation_pending = False
    if s.prompt_player_id:
        message = "Could not generate options, try a different category"
        if i.reason:
            message = f"{message} ({i.reason})"
        t.effects.append(NotifyPlayer(s.prompt_player_id, GenerationFailed(message)))


def _submit_matches(s: LobbyState, i: it.SubmitMatches, ctx: Context, t: Transition) -> None:
    _require_phase(s, Phase.MATCHING)
    actor = _require_member(s, ctx)

    unknown_options = [o for o in i.matches if o not in s.options]
    if unknown_options:
        raise InvalidSubmission(f"Unknown options: {unknown_options}")
    members = set(s.player_ids)
    unknown_players = [pid for pid in i.matches.values() if pid not in members]
    if unknown_players:
        raise InvalidSubmission(f"Unknown players: {unknown_players}")
    if len(set(i.matches.values())) != len(i.matches):
        raise InvalidSubmission("Each player can be matched to at most one option")

    s.submissions[actor] = dict(i.matches)
    if _all_submitted(s):
        _enter_results(s, t)


def _time_up(s: LobbyState, i: it.TimeUp, ctx: Context, t: Transition) -> None:
    if s.phase != Phase.MATCHING or i.round != s.current_round:
        return
    _enter_results(s, t)


def _react(s: LobbyState, i: it.React, ctx: Context, t: Transition) -> None:
    _require_phase(s, Phase.RESULTS)
    _require_member(s, ctx)
    if i.option not in s.options:
        raise InvalidIntent(f"Unknown option: {i.option}")
    allowed = ctx.rules.allowed_reactions
    if allowed and i.emoji not in allowed:
        raise InvalidIntent(f"Unsupported reaction: {i.emoji}")

    bucket = s.reactions.setdefault(i.option, {})
    bucket[i.emoji] = bucket.get(i.emoji, 0) + 1


def _set_results_index(s: LobbyState, i: it.SetResultsIndex, ctx: Context, t: Transition) -> None:
    _require_phase(s, Phase.RESULTS)
    _require_prompt_player(s, ctx)
    last = max(len(s.options) - 1, 0)
    s.current_results_index = min(max(i.index, 0), last)


def _ready_next(s: LobbyState, i: it.ReadyNext, ctx: Context, t: Transition) -> None:
    _require_phase(s, Phase.RESULTS)
    actor = _require_member(s, ctx)
    if actor not in s.ready_players:
        s.ready_players.append(actor)
    if set(s.ready_players) >= set(s.player_ids):
        _advance_round(s, t)


def _next_round(s: LobbyState, i: it.NextRound, ctx: Context, t: Transition) -> None:
    _require_phase(s, Phase.RESULTS)
    if ctx.actor is not None:
        _require_host(s, ctx)
    _advance_round(s, t)


def _leave(s: LobbyState, i: it.Leave, ctx: Context, t: Transition) -> None:
    leaver = s.get_player(ctx.actor) if ctx.actor else None
    if leaver is None:
        return

    s.players = [p for p in s.players if p.player_id != leaver.player_id]
    s.ready_players = [pid for pid in s.ready_players if pid != leaver.player_id]
    s.submissions.pop(leaver.player_id, None)
    for matches in s.submissions.values():
        for option in [o for o, pid in matches.items() if pid == leaver.player_id]:
            del matches[option]

    if leaver.is_host and s.players:
        successor = min(s.players, key=lambda p: p.join_seq)
        s.players = [
            p.model_copy(update={"is_host": p.player_id == successor.player_id})
            for p in s.players
        ]

    if s.phase == Phase.LOBBY:
        s.total_rounds = len(s.players) * 2

    if not s.players:
        s.empty_since = ctx.now
        if s.phase in ROUND_PHASES:
            _end_game(s, t)
        return

    if s.phase not in ROUND_PHASES:
        return

    if len(s.players) < ctx.rules.min_players:
        _end_game(s, t)
        return

    if s.phase == Phase.PROMPT:
        # turn order shrank; this round's slot may now belong to someone else
        turn = s.players[s.current_round % len(s.players)].player_id
        if turn != s.prompt_player_id:
            s.prompt_player_id = turn
            s.current_prompt = None
            s.creativity = None
            s.generation_pending = False
            # invalidates any generation still in flight
            s.generation_id += 1
    elif s.phase == Phase.MATCHING:
        if _all_submitted(s):
            _enter_results(s, t)
    elif s.phase == Phase.RESULTS:
        if set(s.ready_players) >= set(s.player_ids):
            _advance_round(s, t)


_HANDLERS: dict[type, Callable] = {
    it.Join: _join,
    it.StartGame: _start_game,
    it.SubmitPrompt: _submit_prompt,
    it.OptionsReady: _options_ready,
    it.GenerationFailedEvent: _generation_failed,
    it.SubmitMatches: _submit_matches,
    it.TimeUp: _time_up,
    it.React: _react,
    it.SetResultsIndex: _set_results_index,
    it.ReadyNext: _ready_next,
    it.NextRound: _next_round,
    it.Leave: _leave,
}
