"""Persistence of drawings on top of a SQLAlchemy session factory."""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .errors import NotFoundError
from .models import Drawing, DrawItem, ItemEntry, ItemState, ScopePolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

ItemMutation = Callable[[Session, Drawing, DrawItem], T]
DrawingMutation = Callable[[Session, Drawing], T]


class DrawingRepository:
    """Drawing store with whole-record read-modify-write transactions.

    Every public method opens its own transaction, so each call either
    applies completely or not at all. Returned objects are detached with all
    items, entries and scores loaded.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._Session = session_factory

    # -------- reads --------
    def load_all(self, scope_id: Optional[str] = None) -> list[Drawing]:
        """Return every drawing (optionally of one scope), oldest first."""
        stmt = select(Drawing).order_by(Drawing.created_at.asc(), Drawing.id.asc())
        if scope_id is not None:
            stmt = stmt.where(Drawing.scope_id == scope_id)
        with self._Session() as session:
            return list(session.scalars(stmt).all())

    def find_drawing(self, drawing_id: str) -> Optional[Drawing]:
        with self._Session() as session:
            return session.get(Drawing, drawing_id)

    def get_drawing(self, drawing_id: str) -> Drawing:
        drawing = self.find_drawing(drawing_id)
        if drawing is None:
            raise NotFoundError(f"drawing {drawing_id!r} not found")
        return drawing

    def find_item(
        self, drawing_id: str, item_key: str
    ) -> Optional[tuple[Drawing, DrawItem]]:
        drawing = self.find_drawing(drawing_id)
        if drawing is None:
            return None
        item = drawing.item(item_key)
        if item is None:
            return None
        return drawing, item

    def get_item(self, drawing_id: str, item_key: str) -> tuple[Drawing, DrawItem]:
        drawing = self.get_drawing(drawing_id)
        item = drawing.item(item_key)
        if item is None:
            raise NotFoundError(
                f"item {item_key!r} not found in drawing {drawing_id!r}"
            )
        return drawing, item

    def items_in_state(self, state: ItemState) -> list[tuple[Drawing, DrawItem]]:
        """Return ``(drawing, item)`` pairs for every item in ``state``."""
        pairs: list[tuple[Drawing, DrawItem]] = []
        for drawing in self.load_all():
            for item in drawing.items:
                if item.state == state.value:
                    pairs.append((drawing, item))
        return pairs

    def next_awaiting(self) -> Optional[tuple[Drawing, DrawItem]]:
        """Return the awaiting item with the smallest urgency key.

        Ties are broken by end time, drawing id and item position so the
        choice is stable between calls.
        """
        candidates = self.items_in_state(ItemState.AWAITING_SEED)
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda pair: (
                pair[1].urgency_key,
                pair[1].ends_at,
                pair[0].id,
                pair[1].position,
            ),
        )

    def scope_capability(self, scope_id: str) -> Optional[str]:
        with self._Session() as session:
            policy = ScopePolicy.get(session, scope_id)
            return policy.required_capability if policy is not None else None

    # -------- writes --------
    def save(self, drawing: Drawing) -> Drawing:
        """Insert ``drawing`` or overwrite the stored record with the same id."""
        with self._Session.begin() as session:
            merged = session.merge(drawing)
            session.flush()
            # Touch the collections so they are loaded before detaching.
            for item in merged.items:
                item.entries
                item.scores
        return merged

    def delete(self, drawing_id: str) -> bool:
        """Delete a drawing and all of its items. Returns ``False`` if unknown."""
        with self._Session.begin() as session:
            drawing = session.get(Drawing, drawing_id)
            if drawing is None:
                return False
            session.delete(drawing)
        return True

    def mutate_drawing(
        self, drawing_id: str, mutation: DrawingMutation[T]
    ) -> tuple[Drawing, T]:
        """Load the latest ``drawing_id``, apply ``mutation`` and commit.

        Raises
        ------
        NotFoundError
            If the drawing does not exist.
        """
        with self._Session.begin() as session:
            drawing = session.get(Drawing, drawing_id)
            if drawing is None:
                raise NotFoundError(f"drawing {drawing_id!r} not found")
            result = mutation(session, drawing)
            session.flush()
            for item in drawing.items:
                item.entries
                item.scores
        return drawing, result

    def mutate_item(
        self, drawing_id: str, item_key: str, mutation: ItemMutation[T]
    ) -> tuple[Drawing, DrawItem, T]:
        """Like :meth:`mutate_drawing` for a single item.

        Raises
        ------
        NotFoundError
            If the drawing or the item does not exist.
        """

        def _apply(session: Session, drawing: Drawing) -> tuple[DrawItem, T]:
            item = drawing.item(item_key)
            if item is None:
                raise NotFoundError(
                    f"item {item_key!r} not found in drawing {drawing_id!r}"
                )
            return item, mutation(session, drawing, item)

        drawing, (item, result) = self.mutate_drawing(drawing_id, _apply)
        return drawing, item, result

    def add_entries(
        self, drawing_id: str, participant_id: str, item_keys: list[str]
    ) -> tuple[Drawing, list[str]]:
        """Enter ``participant_id`` into every still-open item of ``item_keys``.

        Returns the drawing and the keys the participant was actually added to.
        """

        def _apply(session: Session, drawing: Drawing) -> list[str]:
            added: list[str] = []
            for key in item_keys:
                item = drawing.item(key)
                if item is None or item.state != ItemState.OPEN.value:
                    logger.debug("Skipping entry into %s/%s: not open", drawing_id, key)
                    continue
                if participant_id in item.participant_ids:
                    continue
                item.entries.append(ItemEntry(participant_id=participant_id))
                added.append(key)
            return added

        return self.mutate_drawing(drawing_id, _apply)

    def set_scope_capability(
        self, scope_id: str, capability: Optional[str]
    ) -> ScopePolicy:
        with self._Session.begin() as session:
            policy = ScopePolicy.get(session, scope_id)
            if policy is None:
                policy = ScopePolicy(scope_id=scope_id)
                session.add(policy)
            policy.required_capability = capability or None
            session.flush()
        return policy


__all__ = ["DrawingRepository"]
