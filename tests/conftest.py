"""
Shared fixtures: mock WebSocket, fake option generator, engine factory.
"""
import asyncio

import pytest

from recast.apps.ws.service import FanoutHub
from recast.core import reducer
from recast.core.config import Settings
from recast.core.database import InMemoryLobbyStore
from recast.core.engine import LobbyEngine
from recast.core.intents import Join
from recast.core.models import LobbyState, Phase


# ---------------------------------------------------------------------------
# Mock WebSocket
# ---------------------------------------------------------------------------

class MockWebSocket:
    """Lightweight mock for fastapi.WebSocket."""
    def __init__(self, fail_sends: int = 0):
        self.sent_messages: list[dict] = []
        self.accepted = False
        self.closed = False
        self.close_code = None
        self.fail_sends = fail_sends

    async def accept(self):
        self.accepted = True

    async def send_json(self, data: dict):
        if self.fail_sends:
            self.fail_sends -= 1
            raise RuntimeError("socket write failed")
        self.sent_messages.append(data)

    async def close(self, code: int = 1000):
        self.closed = True
        self.close_code = code

    def all(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent_messages if m.get("type") == msg_type]

    def last(self, msg_type: str) -> dict | None:
        found = self.all(msg_type)
        return found[-1] if found else None


# ---------------------------------------------------------------------------
# Fake option generator
# ---------------------------------------------------------------------------

class FakeGenerator:
    """Returns `options` (or `<prompt>-<i>` items); can be told to fail or stall."""
    def __init__(self, options: list[str] | None = None, fail: Exception | None = None, delay: float = 0.0):
        self.options = options
        self.fail = fail
        self.delay = delay
        self.calls: list[tuple] = []

    async def generate(self, prompt: str, player_count: int, creativity: str = "normal") -> list[str]:
        self.calls.append((prompt, player_count, creativity))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise self.fail
        if self.options is not None:
            return list(self.options)
        return [f"{prompt}-{i}" for i in range(player_count)]


def keep_order(players: list) -> None:
    """Shuffle stand-in: turn order = join order."""


# ---------------------------------------------------------------------------
# Reducer helpers
# ---------------------------------------------------------------------------

def ctx(actor: str | None = None, now: float = 0.0, **rules) -> reducer.Context:
    return reducer.Context(actor=actor, now=now, rules=reducer.Rules(**rules), shuffle=keep_order)


def lobby_with(*names: str, code: str = "ABCD") -> LobbyState:
    """Lobby with players p1..pN named `names`, p1 host."""
    state = LobbyState(code=code)
    for n, name in enumerate(names, start=1):
        state = reducer.apply(state, Join(name=name), ctx(f"p{n}")).state
    return state


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

def make_settings(**overrides) -> Settings:
    values = dict(
        ENV="test",
        DEBUG=False,
        MATCHING_SECONDS_PER_PLAYER=20.0,
        DISCONNECT_GRACE_SEC=0.0,
        JANITOR_INTERVAL_SEC=0.0,
        LOBBY_IDLE_TTL_SEC=60.0,
        GENERATION_TIMEOUT_SEC=1.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
async def make_engine(generator):
    created: list[LobbyEngine] = []

    async def _make(gen=None, **overrides) -> LobbyEngine:
        cfg = make_settings(**overrides)
        store = InMemoryLobbyStore()
        hub = FanoutHub(queue_size=cfg.SUBSCRIBER_QUEUE_SIZE)
        engine = LobbyEngine(store, hub, gen or generator, cfg, shuffle=keep_order)
        await engine.start()
        created.append(engine)
        return engine

    yield _make

    for engine in created:
        await engine.hub.close_all()
        await engine.shutdown()


@pytest.fixture
async def engine(make_engine):
    return await make_engine()


async def seat(engine: LobbyEngine, *names: str) -> tuple[str, list[str]]:
    """Create a lobby hosted by p1 and join p2..pN. Returns (code, player ids)."""
    record = await engine.create_lobby("p1", names[0])
    code = record.state.code
    ids = ["p1"]
    for n, name in enumerate(names[1:], start=2):
        await engine.dispatch(code, Join(name=name), actor=f"p{n}")
        ids.append(f"p{n}")
    return code, ids


async def wait_for(engine: LobbyEngine, code: str, predicate, timeout: float = 2.0):
    """Poll the committed snapshot until `predicate(state)` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        record = await engine.snapshot(code)
        if predicate(record.state):
            return record
        if loop.time() > deadline:
            raise AssertionError(f"timed out waiting on {code}: phase={record.state.phase.value}")
        await asyncio.sleep(0.01)


async def wait_for_phase(engine: LobbyEngine, code: str, phase: Phase, timeout: float = 2.0):
    return await wait_for(engine, code, lambda s: s.phase == phase, timeout)
