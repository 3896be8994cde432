"""
Unit tests for the FanoutHub — per-subscriber queues and delivery rules.
"""
import asyncio

from conftest import MockWebSocket
from recast.apps.ws.service import FanoutHub
from recast.core.errors import NotYourTurn
from recast.core.models import LobbyState, StoredLobby


def record(version: int, code: str = "ABCD") -> StoredLobby:
    return StoredLobby(version=version, state=LobbyState(code=code), updated_at=0.0)


class BlockingWebSocket(MockWebSocket):
    """send_json waits until `release` is set."""
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_json(self, data: dict):
        await self.release.wait()
        await super().send_json(data)


async def test_publish_reaches_all_subscribers():
    hub = FanoutHub()
    a, b = MockWebSocket(), MockWebSocket()
    await hub.connect("abcd", "p1", a)
    await hub.connect("ABCD", "p2", b)
    assert a.accepted and b.accepted

    hub.publish("ABCD", record(3))
    await hub.flush("ABCD")

    for ws in (a, b):
        assert ws.sent_messages == [
            {"type": "state", "version": 3, "state": LobbyState(code="ABCD").dump()}
        ]
    await hub.close_all()


async def test_versions_never_go_backwards():
    hub = FanoutHub()
    ws = MockWebSocket()
    await hub.connect("ABCD", "p1", ws)
    for v in (2, 5, 4, 5, 6):
        hub.publish("ABCD", record(v))
    await hub.flush("ABCD")
    assert [m["version"] for m in ws.all("state")] == [2, 5, 6]
    await hub.close_all()


async def test_other_lobbies_are_untouched():
    hub = FanoutHub()
    ws = MockWebSocket()
    await hub.connect("WXYZ", "p1", ws)
    hub.publish("ABCD", record(1))
    await asyncio.sleep(0)
    assert ws.sent_messages == []
    await hub.close_all()


async def test_overflow_drops_oldest_snapshot():
    hub = FanoutHub(queue_size=3)
    ws = BlockingWebSocket()
    await hub.connect("ABCD", "p1", ws)
    for v in range(1, 8):
        hub.publish("ABCD", record(v))
    ws.release.set()
    await hub.flush("ABCD")

    versions = [m["version"] for m in ws.all("state")]
    assert versions[-1] == 7
    assert versions == sorted(versions)
    assert len(versions) <= 4
    await hub.close_all()


async def test_errors_go_to_one_player():
    hub = FanoutHub()
    a, b = MockWebSocket(), MockWebSocket()
    await hub.connect("ABCD", "p1", a)
    await hub.connect("ABCD", "p2", b)
    hub.send_error("ABCD", "p2", NotYourTurn("It is not your turn"))
    await hub.flush("ABCD")
    assert a.sent_messages == []
    assert b.sent_messages == [{"type": "error", "code": "not_your_turn", "message": "It is not your turn"}]
    await hub.close_all()


async def test_single_failed_write_is_retried():
    hub = FanoutHub()
    ws = MockWebSocket(fail_sends=1)
    await hub.connect("ABCD", "p1", ws)
    hub.publish("ABCD", record(1))
    await hub.flush("ABCD")
    assert [m["version"] for m in ws.all("state")] == [1]
    assert hub.is_connected("ABCD", "p1")
    await hub.close_all()


async def test_two_failed_writes_evict_subscriber():
    hub = FanoutHub()
    bad, good = MockWebSocket(fail_sends=2), MockWebSocket()
    await hub.connect("ABCD", "p1", bad)
    await hub.connect("ABCD", "p2", good)
    hub.publish("ABCD", record(1))
    await asyncio.sleep(0.05)

    assert not hub.is_connected("ABCD", "p1")
    assert bad.closed
    assert bad.close_code == 1011
    assert not hub._closing
    assert hub.get_active_players("ABCD") == ["p2"]
    assert [m["version"] for m in good.all("state")] == [1]
    await hub.close_all()


async def test_new_connection_replaces_old():
    hub = FanoutHub()
    old, new = MockWebSocket(), MockWebSocket()
    first = await hub.connect("ABCD", "p1", old)
    await hub.connect("ABCD", "p1", new)
    assert old.closed and old.close_code == 4000
    assert hub.subscriber_count("ABCD") == 1

    # the stale socket's disconnect must not remove the new one
    hub.disconnect("ABCD", "p1", first)
    assert hub.is_connected("ABCD", "p1")
    await hub.close_all()


async def test_disconnect_last_subscriber_drops_lobby_entry():
    hub = FanoutHub()
    await hub.connect("ABCD", "p1", MockWebSocket())
    hub.disconnect("ABCD", "p1")
    assert hub.subscriber_count("ABCD") == 0
    assert "ABCD" not in hub.active_connections
