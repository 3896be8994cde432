"""
database.py — Lobby Store
=========================
Durable map `code → LobbyState` with optimistic concurrency.

Every write bumps an integer version; `compare_and_set` only succeeds when the
caller's expected version is still the stored one. The engine never holds a
mutex across a write; contention shows up as `Conflict` and is retried.

Backends:
    InMemoryLobbyStore — default, single process (USE_IN_MEMORY_DB=true)
    RedisLobbyStore    — WATCH/MULTI transactions against REDIS_URL
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from recast.core.errors import CodeTaken, Conflict, NotFound, StorageUnavailable
from recast.core.models import LobbyState, StoredLobby

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class LobbyStore:
    """Store interface. All methods may suspend."""

    async def create(self, code: str, state: LobbyState) -> StoredLobby:
        raise NotImplementedError

    async def get(self, code: str) -> StoredLobby:
        raise NotImplementedError

    async def compare_and_set(
        self, code: str, expected_version: int, state: LobbyState
    ) -> StoredLobby:
        raise NotImplementedError

    async def delete(self, code: str) -> bool:
        raise NotImplementedError

    async def list_codes(self) -> list[str]:
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ═══════════════════════════════════════════════════
# IN-MEMORY BACKEND
# ═══════════════════════════════════════════════════

class InMemoryLobbyStore(LobbyStore):
    """Thread-safe in-memory store. Records are kept as JSON so reads never alias."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._records: dict[str, str] = {}
        self._clock = clock

    async def create(self, code: str, state: LobbyState) -> StoredLobby:
        code = normalize_code(code)
        with self._lock:
            if code in self._records:
                raise CodeTaken(code)
            record = StoredLobby(version=1, state=state, updated_at=self._clock())
            self._records[code] = record.model_dump_json(by_alias=True)
            return record

    async def get(self, code: str) -> StoredLobby:
        code = normalize_code(code)
        with self._lock:
            raw = self._records.get(code)
        if raw is None:
            raise NotFound(code)
        return StoredLobby.model_validate_json(raw)

    async def compare_and_set(
        self, code: str, expected_version: int, state: LobbyState
    ) -> StoredLobby:
        code = normalize_code(code)
        with self._lock:
            raw = self._records.get(code)
            if raw is None:
                raise NotFound(code)
            current = StoredLobby.model_validate_json(raw)
            if current.version != expected_version:
                raise Conflict(code, expected_version, current.version)
            record = StoredLobby(
                version=current.version + 1, state=state, updated_at=self._clock()
            )
            self._records[code] = record.model_dump_json(by_alias=True)
            return record

    async def delete(self, code: str) -> bool:
        code = normalize_code(code)
        with self._lock:
            return self._records.pop(code, None) is not None

    async def list_codes(self) -> list[str]:
        with self._lock:
            return list(self._records.keys())

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


# ═══════════════════════════════════════════════════
# REDIS BACKEND
# ═══════════════════════════════════════════════════

class RedisLobbyStore(LobbyStore):
    def __init__(
        self,
        url: str,
        key_prefix: str = "recast:lobby:",
        clock: Callable[[], float] = time.time,
        client: redis.Redis | None = None,
    ):
        self._redis = client or redis.from_url(url, decode_responses=True)
        self._prefix = key_prefix
        self._clock = clock

    def _key(self, code: str) -> str:
        return f"{self._prefix}{normalize_code(code)}"

    async def create(self, code: str, state: LobbyState) -> StoredLobby:
        record = StoredLobby(version=1, state=state, updated_at=self._clock())
        try:
            created = await self._redis.set(
                self._key(code), record.model_dump_json(by_alias=True), nx=True
            )
        except RedisError as e:
            raise StorageUnavailable(str(e)) from e
        if not created:
            raise CodeTaken(normalize_code(code))
        return record

    async def get(self, code: str) -> StoredLobby:
        try:
            raw = await self._redis.get(self._key(code))
        except RedisError as e:
            raise StorageUnavailable(str(e)) from e
        if raw is None:
            raise NotFound(normalize_code(code))
        return StoredLobby.model_validate_json(raw)

    async def compare_and_set(
        self, code: str, expected_version: int, state: LobbyState
    ) -> StoredLobby:
        key = self._key(code)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise NotFound(normalize_code(code))
                current = StoredLobby.model_validate_json(raw)
                if current.version != expected_version:
                    raise Conflict(normalize_code(code), expected_version, current.version)
                record = StoredLobby(
                    version=current.version + 1, state=state, updated_at=self._clock()
                )
                pipe.multi()
                pipe.set(key, record.model_dump_json(by_alias=True))
                await pipe.execute()
                return record
        except WatchError as e:
            raise Conflict(normalize_code(code), expected_version, None) from e
        except RedisError as e:
            raise StorageUnavailable(str(e)) from e

    async def delete(self, code: str) -> bool:
        try:
            return bool(await self._redis.delete(self._key(code)))
        except RedisError as e:
            raise StorageUnavailable(str(e)) from e

    async def list_codes(self) -> list[str]:
        try:
            return [
                key[len(self._prefix):]
                async for key in self._redis.scan_iter(match=f"{self._prefix}*")
            ]
        except RedisError as e:
            raise StorageUnavailable(str(e)) from e

    async def close(self) -> None:
        await self._redis.aclose()


def create_store(settings) -> LobbyStore:
    if settings.USE_IN_MEMORY_DB:
        logger.info("Lobby store: in-memory")
        return InMemoryLobbyStore()
    logger.info(f"Lobby store: redis ({settings.REDIS_URL})")
    return RedisLobbyStore(settings.REDIS_URL, key_prefix=settings.REDIS_KEY_PREFIX)
