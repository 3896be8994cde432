"""
service.py — Fan-out Hub
========================
Keeps the subscriber set of every lobby and pushes committed snapshots.

RESPONSIBILITIES:
-----------------
✅ Register/remove subscribers (one socket per (lobby, player))
✅ Broadcast snapshots after every committed change
✅ Unicast errors to a single player
✅ Per-subscriber bounded queue + writer task (I/O never runs in the engine)

DELIVERY:
---------
- Versions delivered to a subscriber are strictly increasing; a snapshot
  older than (or equal to) the last queued one is discarded.
- On overflow the oldest queued snapshot is dropped; the newest always stays.
- Two consecutive failed writes drop the subscriber. The client reconnects
  and receives a fresh snapshot.

USAGE:
------
    hub = FanoutHub(queue_size=16)
    sub = await hub.connect("ABCD", "p-1", websocket)
    hub.publish("ABCD", record)                 # every subscriber of ABCD
    hub.send_error("ABCD", "p-1", NotYourTurn())   # one player only
"""

import asyncio
import logging
from collections import deque
from typing import Dict, Optional

from fastapi import WebSocket

from recast.apps.ws.schema import ErrorEvent, StateEvent
from recast.core.database import normalize_code
from recast.core.errors import GameError
from recast.core.models import StoredLobby

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 2


class Subscriber:
    """One client connection with its own outbound queue."""

    def __init__(self, hub: "FanoutHub", code: str, player_id: str, websocket: WebSocket, queue_size: int):
        self.hub = hub
        self.code = code
        self.player_id = player_id
        self.websocket = websocket
        self.queue_size = max(queue_size, 1)
        # items: (version | None, message); None = direct message (errors, pong)
        self._queue: deque[tuple[Optional[int], dict]] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self.last_version = 0
        self.failures = 0
        self.closed = False
        self.task = asyncio.create_task(self._pump(), name=f"subscriber-{code}-{player_id}")

    # ── Enqueue (never suspends) ─────────────────────

    def offer_state(self, version: int, message: dict) -> bool:
        if self.closed or version <= self.last_version:
            return False
        self.last_version = version
        self._push((version, message))
        return True

    def offer_direct(self, message: dict) -> None:
        if self.closed:
            return
        self._push((None, message))

    def _push(self, item: tuple[Optional[int], dict]) -> None:
        if len(self._queue) >= self.queue_size:
            self._drop_oldest()
        self._queue.append(item)
        self._idle.clear()
        self._wakeup.set()

    def _drop_oldest(self) -> None:
        for idx, (version, _) in enumerate(self._queue):
            if version is not None:
                del self._queue[idx]
                logger.debug(f"Subscriber {self.player_id}@{self.code} overflow, dropped v{version}")
                return
        self._queue.popleft()

    # ── Writer ───────────────────────────────────────

    async def _pump(self) -> None:
        while not self.closed:
            if not self._queue:
                self._idle.set()
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            item = self._queue[0]
            version, message = item
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                self.failures += 1
                logger.warning(
                    f"⚠️  Write to {self.player_id}@{self.code} failed "
                    f"({self.failures}/{MAX_CONSECUTIVE_FAILURES}): {e}"
                )
                if self.failures >= MAX_CONSECUTIVE_FAILURES:
                    self.hub._evict(self)
                    return
                continue

            self.failures = 0
            if self._queue and self._queue[0] is item:
                self._queue.popleft()

    async def flush(self, timeout: float = 1.0) -> None:
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def close(self, code: int = 1000) -> None:
        self.stop()
        try:
            await self.websocket.close(code=code)
        except Exception:
            logger.debug(f"Socket for {self.player_id}@{self.code} already closed")

    def stop(self) -> None:
        self.closed = True
        self._idle.set()
        if not self.task.done() and self.task is not asyncio.current_task():
            self.task.cancel()


class FanoutHub:
    """
    Central registry of lobby subscribers.

    Data layout:
    {
        "ABCD": {
            "p-1": Subscriber,
            "p-2": Subscriber,
        },
    }
    """

    def __init__(self, queue_size: int = 16):
        self.queue_size = queue_size
        self.active_connections: Dict[str, Dict[str, Subscriber]] = {}
        self._closing: set[asyncio.Task] = set()
        logger.info("FanoutHub initialized")

    async def connect(self, code: str, player_id: str, websocket: WebSocket) -> Subscriber:
        """
        Accept a socket and register it for a lobby.

        A second connection for the same (lobby, player) replaces the first one.
        """
        code = normalize_code(code)
        await websocket.accept()

        group = self.active_connections.setdefault(code, {})
        previous = group.get(player_id)
        subscriber = Subscriber(self, code, player_id, websocket, self.queue_size)
        group[player_id] = subscriber
        if previous:
            logger.info(f"🔁 {player_id} replaced an older connection to {code}")
            await previous.close(code=4000)

        logger.info(f"✅ {player_id} subscribed to {code} ({len(group)} connected)")
        return subscriber

    def disconnect(self, code: str, player_id: str, subscriber: Subscriber | None = None) -> None:
        code = normalize_code(code)
        group = self.active_connections.get(code)
        if not group:
            return
        current = group.get(player_id)
        if current is None or (subscriber is not None and current is not subscriber):
            return
        current.stop()
        del group[player_id]
        logger.info(f"❌ {player_id} unsubscribed from {code}")
        if not group:
            del self.active_connections[code]

    def _evict(self, subscriber: Subscriber) -> None:
        logger.warning(f"Dropping subscriber {subscriber.player_id}@{subscriber.code} after failed writes")
        self.disconnect(subscriber.code, subscriber.player_id, subscriber)
        task = asyncio.create_task(subscriber.close(code=1011))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def publish(self, code: str, record: StoredLobby) -> None:
        """Queue a committed snapshot for every subscriber of the lobby."""
        code = normalize_code(code)
        message = StateEvent.from_record(record).model_dump()
        for subscriber in list(self.active_connections.get(code, {}).values()):
            subscriber.offer_state(record.version, message)

    def send_to(self, code: str, player_id: str, message: dict) -> None:
        subscriber = self.active_connections.get(normalize_code(code), {}).get(player_id)
        if subscriber:
            subscriber.offer_direct(message)
        else:
            logger.warning(f"⚠️  {player_id} not connected to {code}, dropped {message.get('type')}")

    def send_error(self, code: str, player_id: str, error: GameError) -> None:
        self.send_to(code, player_id, ErrorEvent.from_error(error).model_dump())

    def get_active_players(self, code: str) -> list[str]:
        return list(self.active_connections.get(normalize_code(code), {}).keys())

    def is_connected(self, code: str, player_id: str) -> bool:
        return player_id in self.active_connections.get(normalize_code(code), {})

    def subscriber_count(self, code: str) -> int:
        return len(self.active_connections.get(normalize_code(code), {}))

    async def flush(self, code: str, timeout: float = 1.0) -> None:
        for subscriber in list(self.active_connections.get(normalize_code(code), {}).values()):
            await subscriber.flush(timeout=timeout)

    async def close_all(self) -> None:
        for group in list(self.active_connections.values()):
            for subscriber in list(group.values()):
                await subscriber.close(code=1001)
        self.active_connections.clear()
