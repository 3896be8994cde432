"""
End-to-end WebSocket tests through FastAPI's TestClient.
"""
import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import FakeGenerator, MockWebSocket, make_settings, seat
from recast.apps.ws.router import websocket_endpoint
from recast.core.intents import Join
from recast.main import create_app


@pytest.fixture
def generator():
    return FakeGenerator(options=["apple", "banana"])


@pytest.fixture
def client(generator):
    app = create_app(make_settings(), generator=generator)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def code(client):
    return client.post("/api/lobby", json={"playerId": "p1", "name": "Alice"}).json()["code"]


def receive_until(ws, predicate, limit: int = 20) -> dict:
    for _ in range(limit):
        msg = ws.receive_json()
        if predicate(msg):
            return msg
    raise AssertionError("expected message never arrived")


def state_where(check):
    return lambda msg: msg["type"] == "state" and check(msg["state"])


def test_unknown_lobby_is_closed(client):
    with client.websocket_connect("/ws/ZZZZ/p1") as ws:
        msg = ws.receive_json()
        assert msg["type"] == "error"
        assert msg["code"] == "lobby_not_found"
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
        assert exc.value.code == 4404


def test_snapshot_on_connect(client, code):
    with client.websocket_connect(f"/ws/{code}/p1") as ws:
        msg = ws.receive_json()
        assert msg["type"] == "state"
        assert msg["version"] == 1
        assert msg["state"]["code"] == code


def test_join_is_broadcast(client, code):
    with client.websocket_connect(f"/ws/{code}/p1") as alice, client.websocket_connect(f"/ws/{code}/p2") as bob:
        alice.receive_json()
        bob.receive_json()
        bob.send_json({"type": "join", "name": "Bob"})

        for ws in (alice, bob):
            msg = ws.receive_json()
            assert msg["version"] == 2
            assert [p["name"] for p in msg["state"]["players"]] == ["Alice", "Bob"]


def test_rejected_intent_answers_sender(client, code):
    with client.websocket_connect(f"/ws/{code}/p1") as alice, client.websocket_connect(f"/ws/{code}/p2") as bob:
        alice.receive_json()
        bob.receive_json()
        bob.send_json({"type": "join", "name": "alice"})
        msg = bob.receive_json()
        assert msg == {"type": "error", "code": "name_taken", "message": msg["message"]}

        bob.send_json({"type": "join", "name": "Bob"})
        alice.receive_json()
        bob.receive_json()
        bob.send_json({"type": "start_game"})
        assert bob.receive_json()["code"] == "not_host"

        alice.send_json({"type": "ping", "timestamp": 1.5})
        assert alice.receive_json() == {"type": "pong", "timestamp": 1.5}


def test_malformed_and_spoofed_messages(client, code):
    with client.websocket_connect(f"/ws/{code}/p1") as ws:
        ws.receive_json()
        ws.send_json({"type": "teleport"})
        assert ws.receive_json()["code"] == "invalid_intent"
        ws.send_json({"type": "start_game", "playerId": "p2"})
        assert ws.receive_json()["code"] == "forbidden"
        ws.send_text("not json")
        assert ws.receive_json()["code"] == "invalid_intent"
        ws.send_text("x" * 20000)
        assert ws.receive_json()["code"] == "invalid_intent"


def test_round_over_websocket(client, code, generator):
    with client.websocket_connect(f"/ws/{code}/p1") as alice, client.websocket_connect(f"/ws/{code}/p2") as bob:
        alice.receive_json()
        bob.receive_json()
        bob.send_json({"type": "join", "name": "Bob"})
        alice.receive_json()
        bob.receive_json()

        alice.send_json({"type": "start_game"})
        receive_until(bob, state_where(lambda s: s["phase"] == "prompt"))

        alice.send_json({"type": "submit_prompt", "prompt": "fruits", "creativity": "creative"})
        matching = receive_until(bob, state_where(lambda s: s["phase"] == "matching"))
        assert matching["state"]["options"] == ["apple", "banana"]
        assert generator.calls == [("fruits", 2, "creative")]

        alice.send_json({"type": "submit_matches", "matches": {"apple": "p2", "banana": "p1"}})
        bob.send_json({"type": "submit_matches", "matches": {"apple": "p2"}})
        results = receive_until(alice, state_where(lambda s: s["phase"] == "results"))
        assert results["state"]["results"] == {"apple": "p2", "banana": "p1"}

        bob.send_json({"type": "react", "option": "apple", "emoji": "💯"})
        reacted = receive_until(alice, state_where(lambda s: bool(s["reactions"])))
        assert reacted["state"]["reactions"] == {"apple": {"💯": 1}}

        alice.send_json({"type": "next_round"})
        nxt = receive_until(bob, state_where(lambda s: s["currentRound"] == 1))
        assert nxt["state"]["phase"] == "prompt"
        assert nxt["state"]["promptPlayerId"] == "p2"


def test_explicit_leave(client, code):
    with client.websocket_connect(f"/ws/{code}/p1") as alice, client.websocket_connect(f"/ws/{code}/p2") as bob:
        alice.receive_json()
        bob.receive_json()
        bob.send_json({"type": "join", "name": "Bob"})
        alice.receive_json()
        bob.receive_json()

        bob.send_json({"type": "leave"})
        msg = receive_until(alice, state_where(lambda s: len(s["players"]) == 1))
        assert msg["state"]["players"][0]["playerId"] == "p1"


def test_disconnect_leaves_after_grace(client, code):
    with client.websocket_connect(f"/ws/{code}/p1") as alice:
        alice.receive_json()
        with client.websocket_connect(f"/ws/{code}/p2") as bob:
            bob.receive_json()
            bob.send_json({"type": "join", "name": "Bob"})
            bob.receive_json()
            alice.receive_json()
        msg = receive_until(alice, state_where(lambda s: len(s["players"]) == 1))
        assert msg["state"]["players"][0]["name"] == "Alice"


# ---------------------------------------------------------------------------
# Endpoint driven directly (handshake ordering, reconnect)
# ---------------------------------------------------------------------------

class GatewaySocket(MockWebSocket):
    """MockWebSocket carrying app state; `on_accept` runs inside the handshake."""
    def __init__(self, engine, on_accept=None):
        super().__init__()
        self.app = SimpleNamespace(
            state=SimpleNamespace(engine=engine, hub=engine.hub, settings=engine.settings)
        )
        self.on_accept = on_accept
        self.hangup = asyncio.Event()

    async def accept(self):
        await super().accept()
        if self.on_accept:
            await self.on_accept()

    async def receive_text(self) -> str:
        await self.hangup.wait()
        raise WebSocketDisconnect(code=1000)

    def versions(self) -> list[int]:
        return [m["version"] for m in self.all("state")]


async def received(sock: GatewaySocket, count: int, timeout: float = 2.0) -> list[int]:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(sock.versions()) < count:
        if loop.time() > deadline:
            raise AssertionError(f"expected {count} snapshots, got {sock.versions()}")
        await asyncio.sleep(0.01)
    return sock.versions()


async def test_commit_during_handshake_is_not_missed(make_engine):
    engine = await make_engine()
    code, _ = await seat(engine, "Alice")
    created = await engine.snapshot(code)
    sock = GatewaySocket(
        engine, on_accept=lambda: engine.dispatch(code, Join(name="Late"), actor="p9")
    )

    task = asyncio.create_task(websocket_endpoint(sock, code, "p1"))
    await received(sock, 1)
    await engine.hub.flush(code)

    latest = await engine.snapshot(code)
    assert latest.version > created.version
    assert sock.versions() == [latest.version]
    assert [p["name"] for p in sock.last("state")["state"]["players"]] == ["Alice", "Late"]

    sock.hangup.set()
    await task


async def test_reconnect_gets_current_snapshot_and_versions_keep_rising(make_engine):
    engine = await make_engine(DISCONNECT_GRACE_SEC=5.0)
    code, _ = await seat(engine, "Alice")

    first = GatewaySocket(engine)
    task = asyncio.create_task(websocket_endpoint(first, code, "p1"))
    await received(first, 1)
    await engine.dispatch(code, Join(name="Bob"), actor="p2")
    await received(first, 2)
    first.hangup.set()
    await task

    # committed while p1 was away
    await engine.dispatch(code, Join(name="Carol"), actor="p3")

    second = GatewaySocket(engine)
    task = asyncio.create_task(websocket_endpoint(second, code, "p1"))
    await received(second, 1)
    assert second.versions() == [(await engine.snapshot(code)).version]
    await engine.dispatch(code, Join(name="Dan"), actor="p4")
    await received(second, 2)

    latest = await engine.snapshot(code)
    seen = first.versions() + second.versions()
    assert all(a < b for a, b in zip(seen, seen[1:]))
    assert seen[-1] == latest.version
    assert "p1" in latest.state.player_ids

    second.hangup.set()
    await task
