from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .drawing import (  # noqa: F401
    DEFAULT_ALGORITHM_KEY,
    URGENCY_SENTINEL,
    Drawing,
    DrawItem,
    ItemEntry,
    ItemScore,
    ItemState,
)
from .scope import ScopePolicy  # noqa: F401

__all__ = [
    "Base",
    "DEFAULT_ALGORITHM_KEY",
    "URGENCY_SENTINEL",
    "Drawing",
    "DrawItem",
    "ItemEntry",
    "ItemScore",
    "ItemState",
    "ScopePolicy",
]
