"""Per-item deadline timers."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable

from .models import Drawing, ItemState
from .models.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[str, str], Awaitable[None]]


def timer_key(drawing_id: str, item_key: str) -> str:
    return f"{drawing_id}:{item_key}"


class DeadlineScheduler:
    """Keeps exactly one pending timer per open item.

    A timer sleeps until the item's end time and then awaits
    ``on_expire(drawing_id, item_key)``. Arming a key that already has a timer
    cancels the old one first. Past deadlines fire on the next loop iteration.
    """

    def __init__(
        self,
        on_expire: ExpiryCallback,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._on_expire = on_expire
        self._clock = clock
        self._timers: dict[str, asyncio.Task] = {}
        # Timers that already fired and are running the expiry callback.
        self._firing: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._timers)

    def is_armed(self, drawing_id: str, item_key: str) -> bool:
        return timer_key(drawing_id, item_key) in self._timers

    def arm(self, drawing_id: str, item_key: str, ends_at: datetime) -> float:
        """Install the timer for an item and return its delay in seconds.

        Must be called from inside the running event loop.
        """
        key = timer_key(drawing_id, item_key)
        self.cancel(drawing_id, item_key)
        delay = max(0.0, (as_utc(ends_at) - self._clock()).total_seconds())
        task = asyncio.get_running_loop().create_task(
            self._fire_after(key, drawing_id, item_key, delay),
            name=f"deadline:{key}",
        )
        self._timers[key] = task
        logger.debug("Armed deadline for %s in %.3fs", key, delay)
        return delay

    def cancel(self, drawing_id: str, item_key: str) -> bool:
        task = self._timers.pop(timer_key(drawing_id, item_key), None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_drawing(self, drawing: Drawing) -> int:
        return sum(1 for item in drawing.items if self.cancel(drawing.id, item.item_key))

    def cancel_all(self) -> None:
        for task in [*self._timers.values(), *self._firing]:
            task.cancel()
        self._timers.clear()
        self._firing.clear()

    def restore(self, drawings: Iterable[Drawing]) -> int:
        """Re-arm timers for every open item after a restart.

        Items whose deadline passed while the process was down fire
        immediately instead of being skipped.
        """
        armed = 0
        for drawing in drawings:
            for item in drawing.items:
                if item.state != ItemState.OPEN.value:
                    continue
                self.arm(drawing.id, item.item_key, item.ends_at)
                armed += 1
        if armed:
            logger.info("Restored %d deadline timer(s)", armed)
        return armed

    async def _fire_after(
        self, key: str, drawing_id: str, item_key: str, delay: float
    ) -> None:
        await asyncio.sleep(delay)
        # Unregister before firing so a cancel() from the expiry path is a no-op.
        task = asyncio.current_task()
        if self._timers.get(key) is task:
            del self._timers[key]
        self._firing.add(task)
        try:
            await self._on_expire(drawing_id, item_key)
        except Exception:
            logger.exception("Deadline handler failed for %s", key)
        finally:
            self._firing.discard(task)


__all__ = ["DeadlineScheduler", "timer_key"]
