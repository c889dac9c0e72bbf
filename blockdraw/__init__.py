"""Timed multi-prize drawings seeded by future blockchain blocks."""

from .errors import (
    BlockdrawError,
    NotFoundError,
    StateConflictError,
    TransientSourceError,
    ValidationError,
)
from .lifecycle import (
    DrawingController,
    DrawingSpec,
    ItemSpec,
    JoinOutcome,
    JoinResult,
)
from .models import Drawing, DrawItem, ItemState

__all__ = [
    "BlockdrawError",
    "Drawing",
    "DrawingController",
    "DrawingSpec",
    "DrawItem",
    "ItemSpec",
    "ItemState",
    "JoinOutcome",
    "JoinResult",
    "NotFoundError",
    "StateConflictError",
    "TransientSourceError",
    "ValidationError",
]
