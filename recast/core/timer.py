"""
timer.py — Round Timer
======================
One wall-clock task per lobby that raises `TIME_UP(code, round)` at the
matching-phase deadline (`roundStartTime + seconds_per_player × players`).

- A (code, round) pair fires at most once.
- Arming the same round again is a no-op; arming a newer round replaces the
  older task.
- The engine drops the event if the lobby already left `matching`.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

FireCallback = Callable[[str, int], Awaitable[None]]


class RoundTimer:
    def __init__(self, fire: FireCallback, clock: Callable[[], float] = time.time):
        self._fire = fire
        self._clock = clock
        # code → (round, task)
        self._tasks: dict[str, tuple[int, asyncio.Task]] = {}
        self._fired: dict[str, set[int]] = {}

    def arm(self, code: str, round_no: int, deadline: float) -> None:
        if round_no in self._fired.get(code, set()):
            return
        existing = self._tasks.get(code)
        if existing:
            if existing[0] == round_no and not existing[1].done():
                return
            existing[1].cancel()

        delay = max(0.0, deadline - self._clock())
        task = asyncio.create_task(self._run(code, round_no, delay))
        self._tasks[code] = (round_no, task)
        logger.info(f"[timer-set] lobby={code} round={round_no} in {delay:.1f}s")

    def disarm(self, code: str, round_no: int | None = None) -> None:
        existing = self._tasks.get(code)
        if not existing:
            return
        if round_no is not None and existing[0] != round_no:
            return
        existing[1].cancel()
        del self._tasks[code]

    def is_armed(self, code: str) -> bool:
        existing = self._tasks.get(code)
        return bool(existing and not existing[1].done())

    def forget(self, code: str) -> None:
        self.disarm(code)
        self._fired.pop(code, None)

    async def shutdown(self) -> None:
        tasks = [task for _, task in self._tasks.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run(self, code: str, round_no: int, delay: float) -> None:
        await asyncio.sleep(delay)

        fired = self._fired.setdefault(code, set())
        if round_no in fired:
            return
        fired.add(round_no)
        current = self._tasks.get(code)
        if current and current[0] == round_no:
            del self._tasks[code]

        logger.info(f"[timer-fire] lobby={code} round={round_no}")
        try:
            await self._fire(code, round_no)
        except Exception as e:
            logger.error(f"[timer-fire] lobby={code} round={round_no} failed: {e}")
