"""Drawing lifecycle: creation, entries, forced end, edits and re-draws."""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence, Union

from sqlalchemy.orm import Session

from .announce import Announcer, LoggingAnnouncer, safe_notify
from .chain.api import BlockSeed, SeedSource
from .errors import (
    NotFoundError,
    StateConflictError,
    TransientSourceError,
    ValidationError,
)
from .fairness import AlgorithmRegistry, DEFAULT_SCORING_REGISTRY
from .models import DEFAULT_ALGORITHM_KEY, Drawing, DrawItem, ItemState
from .models.utils import as_utc, utcnow
from .repository import DrawingRepository
from .scheduler import DeadlineScheduler
from .seed_queue import SeedQueue, apply_draw_result

logger = logging.getLogger(__name__)

CapabilityCheck = Callable[[str, str, str], Union[bool, Awaitable[bool]]]
"""``(scope_id, participant_id, capability) -> bool`` (may be async)."""


@dataclass
class ItemSpec:
    """Creation input for one prize item."""

    prize: str
    winners_requested: int = 1
    ends_at: Optional[datetime] = None
    duration_minutes: Optional[float] = None
    required_capability: Optional[str] = None
    item_key: Optional[str] = None


@dataclass
class DrawingSpec:
    """Creation input for a drawing."""

    scope_id: str
    items: Sequence[ItemSpec]
    channel_id: Optional[str] = None
    host_id: Optional[str] = None
    algorithm_key: str = DEFAULT_ALGORITHM_KEY


class JoinOutcome(str, enum.Enum):
    JOINED = "joined"
    ALREADY_JOINED = "already-joined"
    DENIED = "denied"


@dataclass
class JoinResult:
    """Per-item outcome of a join request, keyed by item key."""

    drawing_id: str
    participant_id: str
    outcomes: dict[str, JoinOutcome] = field(default_factory=dict)

    def _keys(self, outcome: JoinOutcome) -> list[str]:
        return [key for key, value in self.outcomes.items() if value is outcome]

    @property
    def joined(self) -> list[str]:
        return self._keys(JoinOutcome.JOINED)

    @property
    def already_joined(self) -> list[str]:
        return self._keys(JoinOutcome.ALREADY_JOINED)

    @property
    def denied(self) -> list[str]:
        return self._keys(JoinOutcome.DENIED)


class DrawingController:
    """Orchestrates drawings between callers, the scheduler and the seed queue.

    All coroutine methods must run on the event loop that owns the scheduler
    and the queue. None of them waits for a seed: the seed queue runs on its
    own.

    Parameters
    ----------
    repository : DrawingRepository
        Persistence of drawings.
    source : SeedSource
        Block source used to choose target blocks and fetch seeds.
    announcer : Optional[Announcer], default: None
        Receives state changes and winners. Defaults to :class:`LoggingAnnouncer`.
    capability_check : Optional[CapabilityCheck], default: None
        Decides whether a participant holds a required capability. Without one,
        participants are denied from every item that requires a capability.
    seed_offset, poll_interval, max_wait, registry
        Forwarded to :class:`SeedQueue`.
    default_duration_minutes : int, default: 5
        Duration of items created without end time or duration.
    """

    def __init__(
        self,
        repository: DrawingRepository,
        source: SeedSource,
        announcer: Optional[Announcer] = None,
        *,
        capability_check: Optional[CapabilityCheck] = None,
        seed_offset: int = 2,
        poll_interval: float = 10.0,
        max_wait: Optional[float] = None,
        default_duration_minutes: int = 5,
        registry: Optional[AlgorithmRegistry] = None,
    ) -> None:
        self._repo = repository
        self._source = source
        self._announcer = announcer or LoggingAnnouncer()
        self._capability_check = capability_check
        self._offset = seed_offset
        self._default_duration = default_duration_minutes
        self._registry = registry
        self.scheduler = DeadlineScheduler(self.expire_item)
        self.queue = SeedQueue(
            repository,
            source,
            self._announcer,
            seed_offset=seed_offset,
            poll_interval=poll_interval,
            max_wait=max_wait,
            registry=registry,
        )

    # -------- startup / shutdown --------
    async def start(self) -> None:
        """Recover timers and the queue from persisted state."""
        drawings = self._repo.load_all()
        self.scheduler.restore(drawings)
        if any(d.any_awaiting for d in drawings):
            self.queue.wake()

    async def shutdown(self) -> None:
        self.scheduler.cancel_all()
        await self.queue.stop()

    # -------- reads --------
    def list_drawings(self, scope_id: Optional[str] = None) -> list[Drawing]:
        return self._repo.load_all(scope_id)

    def get_drawing(self, drawing_id: str) -> Drawing:
        return self._repo.get_drawing(drawing_id)

    # -------- creation / deletion --------
    async def create_drawing(self, spec: DrawingSpec) -> Drawing:
        """Validate ``spec``, persist the drawing and arm one timer per item.

        Raises
        ------
        ValidationError
            If the drawing or any item is malformed. Nothing is persisted.
        """
        now = utcnow()
        items = []
        for item_spec in spec.items:
            duration = item_spec.duration_minutes
            if item_spec.ends_at is None and duration is None:
                duration = self._default_duration
            items.append(
                DrawItem(
                    prize=item_spec.prize,
                    winners_requested=item_spec.winners_requested,
                    ends_at=item_spec.ends_at,
                    duration_minutes=duration,
                    required_capability=item_spec.required_capability,
                    item_key=item_spec.item_key,
                    now=now,
                )
            )
        self._check_algorithm(spec.algorithm_key)

        drawing = Drawing(
            scope_id=spec.scope_id,
            items=items,
            channel_id=spec.channel_id,
            host_id=spec.host_id,
            algorithm_key=spec.algorithm_key,
            created_at=now,
        )
        drawing = self._repo.save(drawing)
        for item in drawing.items:
            self.scheduler.arm(drawing.id, item.item_key, item.ends_at)
        logger.info(
            "Created drawing %s in scope %s with %d item(s)",
            drawing.id,
            drawing.scope_id,
            len(drawing.items),
        )
        return drawing

    def _check_algorithm(self, key: str) -> None:
        try:
            (self._registry or DEFAULT_SCORING_REGISTRY).get(key)
        except KeyError as exc:
            raise ValidationError(f"unknown scoring algorithm {key!r}") from exc

    async def delete_drawing(self, drawing_id: str) -> bool:
        """Delete a drawing, cancelling its timers.

        The seed queue drops the drawing's items at its next state check.
        """
        drawing = self._repo.find_drawing(drawing_id)
        if drawing is None:
            return False
        self.scheduler.cancel_drawing(drawing)
        deleted = self._repo.delete(drawing_id)
        if deleted:
            logger.info("Deleted drawing %s", drawing_id)
        return deleted

    def set_scope_capability(self, scope_id: str, capability: Optional[str]) -> None:
        """Set the capability required by items of ``scope_id`` that set none."""
        self._repo.set_scope_capability(scope_id, capability)

    # -------- entries --------
    async def join_item(
        self,
        drawing_id: str,
        participant_id: str,
        item_keys: Optional[Sequence[str]] = None,
        *,
        has_capability: Optional[CapabilityCheck] = None,
    ) -> JoinResult:
        """Enter ``participant_id`` into the open items of a drawing.

        Parameters
        ----------
        drawing_id : str
            Drawing to join.
        participant_id : str
            Entrant identifier.
        item_keys : Optional[Sequence[str]], default: None
            Restrict the join to these items. Every open item is considered
            when omitted; closed items are then skipped silently.
        has_capability : Optional[CapabilityCheck], default: None
            Overrides the controller's capability check for this call.

        Returns
        -------
        JoinResult
            ``joined``, ``already-joined`` or ``denied`` per considered item.

        Raises
        ------
        NotFoundError
            If the drawing or a named item does not exist.
        StateConflictError
            If a named item is no longer open, or no item is open at all.
        """
        if not participant_id or not str(participant_id).strip():
            raise ValidationError("participant_id is required")
        drawing = self._repo.get_drawing(drawing_id)

        if item_keys is not None:
            candidates = []
            for key in item_keys:
                _, item = self._repo.get_item(drawing_id, key)
                if item.state != ItemState.OPEN.value:
                    raise StateConflictError(
                        f"item {key!r} of drawing {drawing_id!r} is {item.state}"
                    )
                candidates.append(item)
        else:
            candidates = [it for it in drawing.items if it.state == ItemState.OPEN.value]
        if not candidates:
            raise StateConflictError(f"drawing {drawing_id!r} has no open items")

        check = has_capability or self._capability_check
        scope_capability = self._repo.scope_capability(drawing.scope_id)
        result = JoinResult(drawing_id=drawing_id, participant_id=participant_id)
        to_join: list[str] = []
        for item in candidates:
            if participant_id in item.participant_ids:
                result.outcomes[item.item_key] = JoinOutcome.ALREADY_JOINED
                continue
            required = item.required_capability or scope_capability
            if required and not await self._holds(
                check, drawing.scope_id, participant_id, required
            ):
                result.outcomes[item.item_key] = JoinOutcome.DENIED
                continue
            to_join.append(item.item_key)

        if to_join:
            drawing, added = self._repo.add_entries(drawing_id, participant_id, to_join)
            for key in to_join:
                if key in added:
                    result.outcomes[key] = JoinOutcome.JOINED
            for key in added:
                item = drawing.item(key)
                if item is not None:
                    safe_notify(self._announcer.notify_state_changed, drawing, item)
        return result

    @staticmethod
    async def _holds(
        check: Optional[CapabilityCheck],
        scope_id: str,
        participant_id: str,
        capability: str,
    ) -> bool:
        if check is None:
            return False
        outcome = check(scope_id, participant_id, capability)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return bool(outcome)

    # -------- closing --------
    async def expire_item(self, drawing_id: str, item_key: str) -> Optional[DrawItem]:
        """Close an open item and hand it to the seed queue.

        This is the scheduler's expiry callback and the tail of
        :meth:`force_end_item`. The target block is the current block plus the
        seed offset; when the source cannot say what the current block is, the
        item is closed without a target and the queue picks one later.
        An item whose end time was moved into the future while its expiry was
        in flight stays open and keeps the timer of its new end time.
        Returns the item after the transition, or ``None`` when nothing changed.
        """
        found = self._repo.find_item(drawing_id, item_key)
        if found is None:
            logger.warning("Expiry for unknown item %s/%s", drawing_id, item_key)
            return None
        if found[1].state != ItemState.OPEN.value:
            return None
        if as_utc(found[1].ends_at) > utcnow():
            self._keep_open(drawing_id, found[1])
            return None

        target = await self._choose_target(drawing_id, item_key)

        def _apply(session: Session, drawing: Drawing, item: DrawItem) -> bool:
            if item.state != ItemState.OPEN.value:
                return False
            if as_utc(item.ends_at) > utcnow():
                return False
            item.state = ItemState.AWAITING_SEED.value
            item.target_block_number = target
            item.awaiting_since = utcnow()
            return True

        try:
            drawing, item, changed = self._repo.mutate_item(drawing_id, item_key, _apply)
        except NotFoundError:
            logger.info("Item %s/%s was deleted before it closed", drawing_id, item_key)
            return None
        if not changed:
            if item.state == ItemState.OPEN.value:
                self._keep_open(drawing_id, item)
            return None
        self.scheduler.cancel(drawing_id, item_key)
        logger.info(
            "Item %s of drawing %s closed with %d entries, target block %s",
            item_key,
            drawing_id,
            len(item.entries),
            target if target is not None else "(pending)",
        )
        safe_notify(self._announcer.notify_state_changed, drawing, item)
        self.queue.wake()
        return item

    def _keep_open(self, drawing_id: str, item: DrawItem) -> None:
        """Leave an extended item open, arming its timer if none is pending."""
        logger.info(
            "Expiry of %s/%s skipped: end time moved to %s",
            drawing_id,
            item.item_key,
            item.ends_at.isoformat(),
        )
        if not self.scheduler.is_armed(drawing_id, item.item_key):
            self.scheduler.arm(drawing_id, item.item_key, item.ends_at)

    async def _choose_target(self, drawing_id: str, item_key: str) -> Optional[int]:
        try:
            current = await asyncio.to_thread(self._source.current_block_number)
        except TransientSourceError as exc:
            logger.warning(
                "Could not read current block for %s/%s (%s); closing without a target",
                drawing_id,
                item_key,
                exc,
            )
            return None
        return current + self._offset

    async def force_end_item(self, drawing_id: str, item_key: str) -> DrawItem:
        """End an open item now, through the same path as natural expiry.

        Items already past ``open`` are returned unchanged.
        """
        _, item = self._repo.get_item(drawing_id, item_key)
        if item.state != ItemState.OPEN.value:
            return item

        def _apply(session: Session, drawing: Drawing, item: DrawItem) -> None:
            if item.state == ItemState.OPEN.value:
                item.ends_at = utcnow()

        self._repo.mutate_item(drawing_id, item_key, _apply)
        self.scheduler.cancel(drawing_id, item_key)
        await self.expire_item(drawing_id, item_key)
        return self._repo.get_item(drawing_id, item_key)[1]

    # -------- edits --------
    async def edit_item(
        self,
        drawing_id: str,
        item_key: str,
        *,
        ends_at: Optional[datetime] = None,
        prize: Optional[str] = None,
        winners_requested: Optional[int] = None,
    ) -> DrawItem:
        """Change an open item. A new end time re-arms its timer.

        Raises
        ------
        ValidationError
            If a new value is malformed.
        StateConflictError
            If the item is no longer open.
        """
        if prize is not None and not prize.strip():
            raise ValidationError("prize must not be empty")
        if winners_requested is not None and winners_requested < 1:
            raise ValidationError("winners_requested must be at least 1")

        def _apply(session: Session, drawing: Drawing, item: DrawItem) -> None:
            if item.state != ItemState.OPEN.value:
                raise StateConflictError(
                    f"item {item_key!r} of drawing {drawing_id!r} is {item.state}"
                )
            if ends_at is not None:
                item.ends_at = as_utc(ends_at)
            if prize is not None:
                item.prize = prize.strip()
            if winners_requested is not None:
                item.winners_requested = winners_requested

        drawing, item, _ = self._repo.mutate_item(drawing_id, item_key, _apply)
        if ends_at is not None:
            self.scheduler.arm(drawing_id, item_key, item.ends_at)
        safe_notify(self._announcer.notify_state_changed, drawing, item)
        return item

    async def redraw_item(
        self,
        drawing_id: str,
        item_key: str,
        reset_seed: bool = False,
        *,
        winners_requested: Optional[int] = None,
    ) -> DrawItem:
        """Draw an item's winners again.

        With ``reset_seed`` the seed, scores and winners are cleared and the
        item goes back to ``awaiting_seed`` with a freshly chosen target.
        Without it the winners are recomputed from the stored seed, optionally
        for a new ``winners_requested``, with no block fetch. An item that is
        still open is force-ended instead.

        Raises
        ------
        ValidationError
            If ``winners_requested`` is less than 1.
        StateConflictError
            If ``reset_seed`` is false and the item has no seed yet.
        """
        if winners_requested is not None and winners_requested < 1:
            raise ValidationError("winners_requested must be at least 1")
        _, item = self._repo.get_item(drawing_id, item_key)

        if item.state == ItemState.OPEN.value:
            if winners_requested is not None:
                await self.edit_item(
                    drawing_id, item_key, winners_requested=winners_requested
                )
            return await self.force_end_item(drawing_id, item_key)

        if reset_seed:
            return await self._reset_and_requeue(drawing_id, item_key, winners_requested)

        if item.seed_block_id is None or item.seed_block_number is None:
            raise StateConflictError(
                f"item {item_key!r} of drawing {drawing_id!r} has no seed to redraw from"
            )

        def _apply(session: Session, drawing: Drawing, item: DrawItem) -> list[str]:
            if item.seed_block_id is None or item.seed_block_number is None:
                raise StateConflictError(
                    f"item {item_key!r} of drawing {drawing_id!r} lost its seed"
                )
            if winners_requested is not None:
                item.winners_requested = winners_requested
            seed = BlockSeed(block_id=item.seed_block_id, number=item.seed_block_number)
            return apply_draw_result(session, drawing, item, seed, registry=self._registry)

        drawing, item, winners = self._repo.mutate_item(drawing_id, item_key, _apply)
        logger.info(
            "Redrew item %s of drawing %s from block %s, winners: %d",
            item_key,
            drawing_id,
            item.seed_block_number,
            len(winners),
        )
        safe_notify(self._announcer.notify_finalized, drawing, item, list(winners))
        return item

    async def _reset_and_requeue(
        self, drawing_id: str, item_key: str, winners_requested: Optional[int]
    ) -> DrawItem:
        target = await self._choose_target(drawing_id, item_key)

        def _apply(session: Session, drawing: Drawing, item: DrawItem) -> None:
            if item.state == ItemState.OPEN.value:
                raise StateConflictError(
                    f"item {item_key!r} of drawing {drawing_id!r} is open"
                )
            item.scores.clear()
            item.winners = []
            item.seed_block_id = None
            item.seed_block_number = None
            item.finalized_at = None
            item.target_block_number = target
            item.state = ItemState.AWAITING_SEED.value
            item.awaiting_since = utcnow()
            if winners_requested is not None:
                item.winners_requested = winners_requested

        drawing, item, _ = self._repo.mutate_item(drawing_id, item_key, _apply)
        logger.info(
            "Reset seed of item %s in drawing %s, new target block %s",
            item_key,
            drawing_id,
            target if target is not None else "(pending)",
        )
        safe_notify(self._announcer.notify_state_changed, drawing, item)
        self.queue.wake()
        return item


__all__ = [
    "CapabilityCheck",
    "DrawingController",
    "DrawingSpec",
    "ItemSpec",
    "JoinOutcome",
    "JoinResult",
]
