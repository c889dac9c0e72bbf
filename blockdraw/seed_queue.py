"""Single-worker queue that acquires block seeds and finalizes items."""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .announce import Announcer, LoggingAnnouncer, safe_notify
from .chain.api import BlockSeed, SeedSource
from .errors import NotFoundError, TransientSourceError
from .fairness import AlgorithmRegistry, evaluate_draw
from .models import Drawing, DrawItem, ItemScore, ItemState
from .models.utils import utcnow
from .repository import DrawingRepository

logger = logging.getLogger(__name__)


def apply_draw_result(
    session: Session,
    drawing: Drawing,
    item: DrawItem,
    seed: BlockSeed,
    *,
    registry: Optional[AlgorithmRegistry] = None,
) -> list[str]:
    """Score ``item`` against ``seed``, store scores and winners, finalize it.

    Must run inside the transaction that loaded ``item``. Existing scores are
    deleted and flushed before the new rows are inserted, so recomputing from
    the same seed does not trip the per-participant unique constraint.
    """
    evaluation = evaluate_draw(
        drawing.secret,
        seed.block_id,
        item.participant_ids,
        item.winners_requested,
        algorithm_key=drawing.algorithm_key,
        registry=registry,
    )
    item.scores.clear()
    session.flush()
    item.scores.extend(
        ItemScore(participant_id=s.participant_id, hmac=s.hmac, score=s.score)
        for s in evaluation.ranking
    )
    item.seed_block_id = seed.block_id
    item.seed_block_number = seed.number
    item.winners = list(evaluation.winners)
    item.state = ItemState.FINALIZED.value
    item.finalized_at = utcnow()
    return item.winners


class _Finalize(enum.Enum):
    DONE = "done"
    STALE = "stale"  # target changed while the block was being fetched
    GONE = "gone"  # finalized elsewhere, reopened or deleted


class SeedQueue:
    """Serializes seed acquisition across all drawings.

    One worker task services the awaiting item with the smallest urgency key
    until it is finalized, retrying every ``poll_interval`` seconds, then
    picks the next one. The ordering is re-read from the database each time.
    The worker idles on a wake signal when nothing awaits a seed.

    Parameters
    ----------
    repository : DrawingRepository
        Source of truth for item state.
    source : SeedSource
        Block source; its blocking calls run in a worker thread.
    announcer : Optional[Announcer], default: None
        Receives ``notify_finalized``. Defaults to :class:`LoggingAnnouncer`.
    seed_offset : int, default: 2
        Blocks added to the current height when a target must be chosen.
    poll_interval : float, default: 10.0
        Seconds between attempts on the same item.
    max_wait : Optional[float], default: None
        Escalation threshold in seconds. An item waiting longer is reported
        with ``logger.error`` once per wait; a seed reset starts a new wait.
        Retries continue regardless.
    registry : Optional[AlgorithmRegistry], default: None
        Scoring registry override.
    """

    def __init__(
        self,
        repository: DrawingRepository,
        source: SeedSource,
        announcer: Optional[Announcer] = None,
        *,
        seed_offset: int = 2,
        poll_interval: float = 10.0,
        max_wait: Optional[float] = None,
        registry: Optional[AlgorithmRegistry] = None,
    ) -> None:
        if seed_offset < 1:
            raise ValueError("seed_offset must be at least 1")
        self._repo = repository
        self._source = source
        self._announcer = announcer or LoggingAnnouncer()
        self._offset = seed_offset
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._registry = registry
        self._wake_signal = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None
        # awaiting_since of every item already escalated, so a reset re-arms it
        self._escalated: dict[tuple[str, str], datetime] = {}

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def wake(self) -> None:
        """Signal that an item may be awaiting its seed.

        Starts the worker when it is not running. Otherwise only sets the
        signal; repeated calls are harmless.
        """
        self._wake_signal.set()
        if not self.running:
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="seed-queue"
            )

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _run(self) -> None:
        logger.debug("Seed queue worker started")
        while True:
            # Clear before looking, so a wake() during the lookup is not lost.
            self._wake_signal.clear()
            try:
                picked = self._repo.next_awaiting()
                if picked is None:
                    await self._wake_signal.wait()
                    continue
                drawing, item = picked
                try:
                    await self._process(drawing.id, item.item_key)
                finally:
                    self._escalated.pop((drawing.id, item.item_key), None)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Seed queue iteration failed; retrying in %ss", self._poll_interval
                )
                await asyncio.sleep(self._poll_interval)

    async def _process(self, drawing_id: str, item_key: str) -> None:
        """Work on one item until it is finalized or abandoned."""
        announced = False
        while True:
            current = self._repo.find_item(drawing_id, item_key)
            if current is None or current[1].state != ItemState.AWAITING_SEED.value:
                logger.debug("Abandoning %s/%s: no longer awaiting", drawing_id, item_key)
                return
            drawing, item = current
            if not announced:
                announced = True
                logger.info(
                    "Polling for target block %s for item %s (drawing %s)",
                    item.target_block_number
                    if item.target_block_number is not None
                    else "(no numeric target)",
                    item_key,
                    drawing_id,
                )

            try:
                seed = await self._acquire(drawing_id, item_key, item.target_block_number)
            except TransientSourceError as exc:
                logger.debug(
                    "Seed for %s/%s not available (%s); retrying in %ss",
                    drawing_id,
                    item_key,
                    exc,
                    self._poll_interval,
                )
                self._escalate_if_overdue(drawing, item)
                await asyncio.sleep(self._poll_interval)
                continue

            if seed is None:
                return
            outcome = self._finalize(drawing_id, item_key, seed)
            if outcome is _Finalize.STALE:
                continue
            return

    async def _acquire(
        self, drawing_id: str, item_key: str, target: Optional[int]
    ) -> Optional[BlockSeed]:
        """Fetch the item's target block, choosing the target first if needed.

        Returns ``None`` when the item stopped awaiting while the target was
        being chosen.
        """
        if target is None:
            current = await asyncio.to_thread(self._source.current_block_number)
            target = self._assign_target(drawing_id, item_key, current + self._offset)
            if target is None:
                return None
        return await asyncio.to_thread(self._source.block_at, target)

    def _assign_target(
        self, drawing_id: str, item_key: str, target: int
    ) -> Optional[int]:
        def _apply(session: Session, drawing: Drawing, item: DrawItem) -> Optional[int]:
            if item.state != ItemState.AWAITING_SEED.value:
                return None
            if item.target_block_number is None:
                item.target_block_number = target
                logger.info(
                    "Assigned target block %s to %s/%s", target, drawing_id, item_key
                )
            return item.target_block_number

        try:
            _, _, assigned = self._repo.mutate_item(drawing_id, item_key, _apply)
        except NotFoundError:
            return None
        return assigned

    def _finalize(self, drawing_id: str, item_key: str, seed: BlockSeed) -> _Finalize:
        def _apply(session: Session, drawing: Drawing, item: DrawItem) -> _Finalize:
            if item.state != ItemState.AWAITING_SEED.value:
                return _Finalize.GONE
            if item.target_block_number != seed.number:
                return _Finalize.STALE
            apply_draw_result(session, drawing, item, seed, registry=self._registry)
            return _Finalize.DONE

        try:
            drawing, item, outcome = self._repo.mutate_item(drawing_id, item_key, _apply)
        except NotFoundError:
            return _Finalize.GONE

        if outcome is _Finalize.DONE:
            logger.info(
                "Finalized item %s in drawing %s with block %s, winners: %d",
                item_key,
                drawing_id,
                seed.number,
                len(item.winners),
            )
            safe_notify(self._announcer.notify_finalized, drawing, item, list(item.winners))
        return outcome

    def _escalate_if_overdue(self, drawing: Drawing, item: DrawItem) -> None:
        if self._max_wait is None or item.awaiting_since is None:
            return
        key = (drawing.id, item.item_key)
        if self._escalated.get(key) == item.awaiting_since:
            return
        waited = (utcnow() - item.awaiting_since).total_seconds()
        if waited > self._max_wait:
            self._escalated[key] = item.awaiting_since
            logger.error(
                "Item %s/%s has awaited its seed for %.0fs (limit %.0fs); still retrying",
                drawing.id,
                item.item_key,
                waited,
                self._max_wait,
            )


__all__ = ["SeedQueue", "apply_draw_result"]
