"""
engine.py — Lobby Engine
========================
Single-writer actor per lobby.

FLOW:
-----
    gateway ──dispatch()──▶ mailbox[code] ──▶ actor loop
                                               1. store.get(code)
                                               2. reducer.apply(state, intent)
                                               3. store.compare_and_set(version)   (Conflict → reload, re-apply)
                                               4. hub.publish(snapshot)
                                               5. run effects (generation, timers, notifications)

Intents for one lobby are applied strictly in mailbox order; different lobbies
run in parallel. Option generation runs in its own task and reports back
through the same mailbox (`OPTIONS_READY` / `GENERATION_FAILED`), as does the
round timer (`TIME_UP`).

USAGE:
------
    engine = LobbyEngine(store, hub, generator, settings)
    await engine.start()
    record = await engine.create_lobby("p-1", "Alice")
    await engine.dispatch(record.state.code, Join(name="Bob"), actor="p-2")
"""

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Callable

from recast.core import reducer
from recast.core.config import Settings, get_settings
from recast.core.database import LobbyStore, normalize_code
from recast.core.errors import (
    CodeTaken,
    Conflict,
    GameError,
    GenerationFailed,
    InternalError,
    LobbyNotFound,
    NotFound,
    StorageUnavailable,
)
from recast.core.intents import (
    GenerationFailedEvent,
    Intent,
    Leave,
    OptionsReady,
    TimeUp,
)
from recast.core.models import Phase, StoredLobby
from recast.core.timer import RoundTimer

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase
CODE_LENGTH = 4
MAX_CODE_ATTEMPTS = 50


def generate_lobby_code() -> str:
    return "".join(random.choices(CODE_ALPHABET, k=CODE_LENGTH))


@dataclass
class _Envelope:
    intent: Intent
    actor: str | None
    future: asyncio.Future | None


class LobbyActor:
    """Mailbox + worker task for one lobby code."""

    def __init__(self, engine: "LobbyEngine", code: str):
        self.engine = engine
        self.code = code
        self.mailbox: asyncio.Queue[_Envelope] = asyncio.Queue()
        self.hydrated = False
        self.task = asyncio.create_task(self._run(), name=f"lobby-actor-{code}")

    async def _run(self) -> None:
        while True:
            env = await self.mailbox.get()
            try:
                record = await self.engine._process(self, env.intent, env.actor)
                if env.future and not env.future.done():
                    env.future.set_result(record)
            except GameError as e:
                if env.future and not env.future.done():
                    env.future.set_exception(e)
                elif not isinstance(e, LobbyNotFound):
                    logger.warning(f"[{self.code}] {env.intent.type} rejected: {e.code} {e.message}")
                if isinstance(e, LobbyNotFound) and self.mailbox.empty():
                    self.engine._drop_actor(self.code, self)
                    return
            except Exception as e:
                logger.error(f"💀 [{self.code}] {env.intent.type} crashed: {e}", exc_info=True)
                if env.future and not env.future.done():
                    env.future.set_exception(InternalError("Internal server error"))


class LobbyEngine:
    def __init__(
        self,
        store: LobbyStore,
        hub,
        generator,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
        shuffle: Callable[[list], None] = random.shuffle,
    ):
        self.store = store
        self.hub = hub
        self.generator = generator
        self.settings = settings or get_settings()
        self.rules = reducer.Rules.from_settings(self.settings)
        self._clock = clock
        self._shuffle = shuffle
        self.timer = RoundTimer(self._on_time_up, clock=clock)

        self._actors: dict[str, LobbyActor] = {}
        self._background: set[asyncio.Task] = set()
        self._pending_leaves: dict[tuple[str, str], asyncio.Task] = {}
        self._janitor: asyncio.Task | None = None

    # ═══════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════

    async def start(self) -> None:
        if self._janitor is None and self.settings.JANITOR_INTERVAL_SEC > 0:
            self._janitor = asyncio.create_task(self._janitor_loop(), name="lobby-janitor")
        logger.info("LobbyEngine started")

    async def shutdown(self) -> None:
        tasks = [a.task for a in self._actors.values()]
        tasks += list(self._background)
        tasks += list(self._pending_leaves.values())
        if self._janitor:
            tasks.append(self._janitor)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.timer.shutdown()
        self._actors.clear()
        self._background.clear()
        self._pending_leaves.clear()
        self._janitor = None
        logger.info("LobbyEngine stopped")

    # ═══════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════

    async def create_lobby(self, host_id: str, host_name: str) -> StoredLobby:
        """Create a lobby with a fresh code; the creator joins as host."""
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_lobby_code()
            state = reducer.new_lobby(code, host_id, host_name)
            try:
                record = await self.store.create(code, state)
            except CodeTaken:
                continue
            except StorageUnavailable as e:
                raise InternalError(f"Storage unavailable: {e}") from e
            logger.info(f"🎮 Lobby created: {code} by {host_name}")
            return record
        raise InternalError("Could not allocate a lobby code")

    async def snapshot(self, code: str) -> StoredLobby:
        try:
            return await self.store.get(normalize_code(code))
        except NotFound as e:
            raise LobbyNotFound(f"Lobby not found: {normalize_code(code)}") from e
        except StorageUnavailable as e:
            raise InternalError(f"Storage unavailable: {e}") from e

    async def dispatch(self, code: str, intent: Intent, actor: str | None = None) -> StoredLobby:
        """Queue an intent and wait until it is committed (or rejected)."""
        future = asyncio.get_running_loop().create_future()
        self._enqueue(code, intent, actor, future)
        return await future

    def post(self, code: str, intent: Intent, actor: str | None = None) -> None:
        """Queue an intent without waiting; failures are only logged."""
        self._enqueue(code, intent, actor, None)

    def schedule_leave(self, code: str, player_id: str, delay: float | None = None) -> None:
        """Apply LEAVE after a grace period unless the player reconnects."""
        code = normalize_code(code)
        delay = self.settings.DISCONNECT_GRACE_SEC if delay is None else delay
        self.cancel_leave(code, player_id)
        task = asyncio.create_task(self._delayed_leave(code, player_id, delay))
        self._pending_leaves[(code, player_id)] = task

    def cancel_leave(self, code: str, player_id: str) -> None:
        task = self._pending_leaves.pop((normalize_code(code), player_id), None)
        if task:
            task.cancel()

    async def purge_idle(self, now: float | None = None) -> list[str]:
        """Delete lobbies nobody is subscribed to and nobody touched for the idle TTL."""
        now = self._clock() if now is None else now
        purged = []
        try:
            codes = await self.store.list_codes()
        except StorageUnavailable as e:
            logger.warning(f"Janitor skipped, storage unavailable: {e}")
            return purged

        for code in codes:
            if self.hub.subscriber_count(code) > 0:
                continue
            try:
                record = await self.store.get(code)
            except NotFound:
                continue
            if now - record.updated_at < self.settings.LOBBY_IDLE_TTL_SEC:
                continue
            await self.store.delete(code)
            self.timer.forget(code)
            actor = self._actors.pop(code, None)
            if actor:
                actor.task.cancel()
            purged.append(code)
            logger.info(f"🗑️  Lobby purged: {code} (idle {now - record.updated_at:.0f}s)")
        return purged

    # ═══════════════════════════════════════════════════
    # ACTOR INTERNALS
    # ═══════════════════════════════════════════════════

    def _enqueue(self, code: str, intent: Intent, actor: str | None, future) -> None:
        code = normalize_code(code)
        lobby_actor = self._actors.get(code)
        if lobby_actor is None or lobby_actor.task.done():
            lobby_actor = LobbyActor(self, code)
            self._actors[code] = lobby_actor
        lobby_actor.mailbox.put_nowait(_Envelope(intent=intent, actor=actor, future=future))

    def _drop_actor(self, code: str, actor: LobbyActor) -> None:
        if self._actors.get(code) is actor:
            del self._actors[code]

    def _context(self, actor: str | None) -> reducer.Context:
        return reducer.Context(
            actor=actor, now=self._clock(), rules=self.rules, shuffle=self._shuffle
        )

    async def _load(self, lobby_actor: LobbyActor) -> StoredLobby:
        code = lobby_actor.code
        try:
            record = await self.store.get(code)
        except NotFound as e:
            raise LobbyNotFound(f"Lobby not found: {code}") from e
        except StorageUnavailable as e:
            raise InternalError(f"Storage unavailable: {e}") from e

        if not lobby_actor.hydrated:
            lobby_actor.hydrated = True
            state = record.state
            if state.phase == Phase.MATCHING and not self.timer.is_armed(code):
                deadline = state.matching_deadline(self.rules.seconds_per_player)
                if deadline is not None:
                    self.timer.arm(code, state.current_round, deadline)
        return record

    async def _process(self, lobby_actor: LobbyActor, intent: Intent, actor: str | None) -> StoredLobby:
        code = lobby_actor.code
        retries = max(self.settings.CAS_MAX_RETRIES, 0)

        for attempt in range(retries + 1):
            record = await self._load(lobby_actor)
            transition = reducer.apply(record.state, intent, self._context(actor))

            if transition.state == record.state:
                self._run_effects(code, transition.effects)
                return record

            try:
                committed = await self.store.compare_and_set(code, record.version, transition.state)
            except Conflict as e:
                logger.warning(f"[{code}] CAS conflict on {intent.type} (attempt {attempt + 1}): {e}")
                continue
            except NotFound as e:
                raise LobbyNotFound(f"Lobby not found: {code}") from e
            except StorageUnavailable as e:
                raise InternalError(f"Storage unavailable: {e}") from e

            if committed.state.phase != record.state.phase:
                logger.info(
                    f"[{code}] phase {record.state.phase.value} → {committed.state.phase.value} "
                    f"(round {committed.state.current_round}, v{committed.version})"
                )
            self.hub.publish(code, committed)
            self._run_effects(code, transition.effects)
            return committed

        raise InternalError(f"Lobby {code} is busy, try again")

    def _run_effects(self, code: str, effects: list[reducer.Effect]) -> None:
        for effect in effects:
            if isinstance(effect, reducer.StartGeneration):
                self._spawn(self._generate(code, effect))
            elif isinstance(effect, reducer.ArmTimer):
                self.timer.arm(code, effect.round, effect.deadline)
            elif isinstance(effect, reducer.DisarmTimer):
                self.timer.disarm(code, effect.round)
            elif isinstance(effect, reducer.NotifyPlayer):
                self.hub.send_error(code, effect.player_id, effect.error)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ═══════════════════════════════════════════════════
    # OUT-OF-BAND WORK
    # ═══════════════════════════════════════════════════

    async def _generate(self, code: str, effect: reducer.StartGeneration) -> None:
        try:
            options = await asyncio.wait_for(
                self.generator.generate(effect.prompt, effect.player_count, effect.creativity),
                timeout=self.settings.GENERATION_TIMEOUT_SEC,
            )
            intent: Intent = OptionsReady(generation_id=effect.generation_id, options=options)
        except asyncio.TimeoutError:
            logger.warning(f"[{code}] option generation timed out")
            intent = GenerationFailedEvent(generation_id=effect.generation_id, reason="timed out")
        except GenerationFailed as e:
            logger.warning(f"[{code}] option generation failed: {e.message}")
            intent = GenerationFailedEvent(generation_id=effect.generation_id, reason=e.message)
        except Exception as e:
            logger.error(f"[{code}] option generator error: {e}")
            intent = GenerationFailedEvent(generation_id=effect.generation_id, reason="generator error")
        self.post(code, intent)

    async def _on_time_up(self, code: str, round_no: int) -> None:
        self.post(code, TimeUp(round=round_no))

    async def _delayed_leave(self, code: str, player_id: str, delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            if self.hub.is_connected(code, player_id):
                return
            logger.info(f"[{code}] {player_id} did not reconnect, leaving")
            self.post(code, Leave(), actor=player_id)
        finally:
            current = self._pending_leaves.get((code, player_id))
            if current is asyncio.current_task():
                del self._pending_leaves[(code, player_id)]

    async def _janitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.JANITOR_INTERVAL_SEC)
            try:
                await self.purge_idle()
            except Exception as e:
                logger.error(f"Janitor sweep failed: {e}")
