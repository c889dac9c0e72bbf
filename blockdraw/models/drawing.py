"""Database models for drawings, prize items, entries and scores."""

from __future__ import annotations

import enum
import json
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.utils import dt_iso, epoch_ms
from ..errors import ValidationError
from .base import Base
from .types import BLOCK_NUMBER_TYPE, UTCDateTime
from .utils import as_utc, generate_identifier, generate_secret, utcnow

DEFAULT_ALGORITHM_KEY = "hmac_sha512_float52"

# Urgency of an awaiting item that has neither a target block nor an end time.
URGENCY_SENTINEL = 10**18


class ItemState(str, enum.Enum):
    """Lifecycle state of a :class:`DrawItem`."""

    OPEN = "open"
    AWAITING_SEED = "awaiting_seed"
    FINALIZED = "finalized"


class Drawing(Base):
    """A hosted drawing: one secret shared by one or more prize items."""

    __tablename__ = "drawings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    """Public identifier (``draw-<base62>``)."""

    scope_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    """Owning scope, e.g. the chat server the drawing runs in."""

    channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """Channel where state changes and winners are announced."""

    host_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """Participant id of the host, displayed only."""

    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    """Per-drawing HMAC key. Written once at creation and never rotated."""

    algorithm_key: Mapped[str] = mapped_column(
        String(100), nullable=False, default=DEFAULT_ALGORITHM_KEY
    )
    """Scoring algorithm registered in the fairness registry."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    items: Mapped[list["DrawItem"]] = relationship(
        back_populates="drawing",
        cascade="all, delete-orphan",
        order_by="DrawItem.position",
        lazy="selectin",
    )

    def __init__(
        self,
        *,
        scope_id: str,
        items: Sequence["DrawItem"],
        channel_id: Optional[str] = None,
        host_id: Optional[str] = None,
        secret: Optional[str] = None,
        algorithm_key: str = DEFAULT_ALGORITHM_KEY,
        id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        if not scope_id or not str(scope_id).strip():
            raise ValidationError("scope_id is required")
        if not items:
            raise ValidationError("a drawing needs at least one item")
        if secret is not None and not secret:
            raise ValidationError("secret must not be empty")

        seen: set[str] = set()
        for position, item in enumerate(items):
            if not item.item_key:
                item.item_key = f"item-{position + 1}"
            if item.item_key in seen:
                raise ValidationError(f"duplicate item key {item.item_key!r}")
            seen.add(item.item_key)
            item.position = position

        self.id = id or generate_identifier("draw")
        self.scope_id = str(scope_id).strip()
        self.channel_id = channel_id
        self.host_id = host_id
        self.secret = secret or generate_secret()
        self.algorithm_key = algorithm_key
        self.created_at = as_utc(created_at) if created_at else utcnow()
        self.items = list(items)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Drawing(id={id}, scope_id={scope}, items={n})>".format(
            id=self.id, scope=self.scope_id, n=len(self.items)
        )

    def item(self, item_key: str) -> Optional["DrawItem"]:
        """Return the item with ``item_key`` or ``None``."""
        for it in self.items:
            if it.item_key == item_key:
                return it
        return None

    @property
    def any_awaiting(self) -> bool:
        return any(it.state == ItemState.AWAITING_SEED.value for it in self.items)

    @property
    def all_finalized(self) -> bool:
        return all(it.state == ItemState.FINALIZED.value for it in self.items)

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "scope_id": self.scope_id,
            "channel_id": self.channel_id,
            "host_id": self.host_id,
            "secret": self.secret,
            "algorithm_key": self.algorithm_key,
            "created_at": dt_iso(self.created_at),
            "items": [it.to_json() for it in self.items],
        }

    def to_json_str(self) -> str:
        return json.dumps(self.to_json())


class DrawItem(Base):
    """One prize slot of a drawing with its own entrants, deadline and winners."""

    __tablename__ = "draw_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    drawing_id: Mapped[str] = mapped_column(
        ForeignKey("drawings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_key: Mapped[str] = mapped_column(String(64), nullable=False)
    """Identifier unique within the owning drawing."""

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prize: Mapped[str] = mapped_column(String(255), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    winners_requested: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    required_capability: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    """Capability (e.g. a role id) a participant must hold to enter."""

    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ItemState.OPEN.value
    )
    target_block_number: Mapped[Optional[int]] = mapped_column(
        BLOCK_NUMBER_TYPE, nullable=True
    )
    """Block whose id becomes the seed; ``None`` until the source answered."""

    seed_block_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    seed_block_number: Mapped[Optional[int]] = mapped_column(
        BLOCK_NUMBER_TYPE, nullable=True
    )
    winners: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    """Winning participant ids, best score first."""

    awaiting_since: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )

    drawing: Mapped["Drawing"] = relationship(back_populates="items")
    entries: Mapped[list["ItemEntry"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="ItemEntry.id",
        lazy="selectin",
    )
    scores: Mapped[list["ItemScore"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("drawing_id", "item_key", name="uq_draw_items_drawing_key"),
        CheckConstraint(
            "state IN ('open','awaiting_seed','finalized')", name="state_enum"
        ),
        CheckConstraint("winners_requested >= 1", name="winners_positive"),
        Index("ix_draw_items_state", "state"),
    )

    def __init__(
        self,
        *,
        prize: str,
        winners_requested: int = 1,
        ends_at: Optional[datetime] = None,
        duration_minutes: Optional[float] = None,
        required_capability: Optional[str] = None,
        item_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        if prize is None or not str(prize).strip():
            raise ValidationError("prize must not be empty")
        try:
            winners = int(winners_requested)
        except (TypeError, ValueError) as exc:
            raise ValidationError("winners_requested must be an integer") from exc
        if winners < 1:
            raise ValidationError("winners_requested must be at least 1")

        if ends_at is not None:
            resolved_end = as_utc(ends_at)
        elif duration_minutes is not None:
            if duration_minutes <= 0:
                raise ValidationError("duration_minutes must be positive")
            start = as_utc(now) if now is not None else utcnow()
            resolved_end = start + timedelta(minutes=duration_minutes)
        else:
            raise ValidationError("either ends_at or duration_minutes is required")

        self.prize = str(prize).strip()
        self.winners_requested = winners
        self.ends_at = resolved_end
        self.required_capability = required_capability or None
        self.item_key = item_key or ""
        self.state = ItemState.OPEN.value
        self.target_block_number = None
        self.seed_block_id = None
        self.seed_block_number = None
        self.winners = []
        self.entries = []
        self.scores = []

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<DrawItem(drawing_id={d}, key={k}, state={s})>".format(
            d=self.drawing_id, k=self.item_key, s=self.state
        )

    @property
    def participant_ids(self) -> list[str]:
        return [entry.participant_id for entry in self.entries]

    @property
    def score_map(self) -> dict[str, "ItemScore"]:
        return {score.participant_id: score for score in self.scores}

    @property
    def seed(self) -> Optional[str]:
        return self.seed_block_id

    @property
    def urgency_key(self) -> int:
        """Ordering value used by the seed queue: smaller is served first."""
        if self.target_block_number is not None:
            return int(self.target_block_number)
        ms = epoch_ms(self.ends_at)
        return ms if ms is not None else URGENCY_SENTINEL

    def to_json(self) -> dict[str, Any]:
        return {
            "item_key": self.item_key,
            "prize": self.prize,
            "ends_at": dt_iso(self.ends_at),
            "winners_requested": self.winners_requested,
            "required_capability": self.required_capability,
            "state": self.state,
            "entries": self.participant_ids,
            "target_block_number": self.target_block_number,
            "seed_block_id": self.seed_block_id,
            "seed_block_number": self.seed_block_number,
            "scores": {
                s.participant_id: {"hmac": s.hmac, "score": s.score}
                for s in self.scores
            },
            "winners": list(self.winners or []),
            "awaiting_since": dt_iso(self.awaiting_since),
            "finalized_at": dt_iso(self.finalized_at),
        }


class ItemEntry(Base):
    """A participant's entry into a prize item."""

    __tablename__ = "item_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("draw_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    participant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    item: Mapped["DrawItem"] = relationship(back_populates="entries")

    __table_args__ = (
        UniqueConstraint("item_id", "participant_id", name="uq_item_entries_participant"),
    )


class ItemScore(Base):
    """HMAC score of one participant, written when the seed is acquired."""

    __tablename__ = "item_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("draw_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    participant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    hmac: Mapped[str] = mapped_column(String(128), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)

    item: Mapped["DrawItem"] = relationship(back_populates="scores")

    __table_args__ = (
        UniqueConstraint("item_id", "participant_id", name="uq_item_scores_participant"),
    )


__all__ = [
    "DEFAULT_ALGORITHM_KEY",
    "URGENCY_SENTINEL",
    "ItemState",
    "Drawing",
    "DrawItem",
    "ItemEntry",
    "ItemScore",
]
