"""Error taxonomy shared by every blockdraw component."""

from __future__ import annotations


class BlockdrawError(Exception):
    """Base class for errors raised by the drawing core."""


class ValidationError(BlockdrawError, ValueError):
    """Malformed creation or edit input. Nothing is persisted."""


class NotFoundError(BlockdrawError, LookupError):
    """Reference to an unknown drawing or item."""


class StateConflictError(BlockdrawError):
    """Operation attempted on an item whose state does not allow it."""


class TransientSourceError(BlockdrawError):
    """The block source is unreachable or the requested block is not ready.

    Raised by :class:`~blockdraw.chain.api.BlockSource` and absorbed by the
    seed queue's retry loop. It never crosses the controller boundary.
    """


__all__ = [
    "BlockdrawError",
    "ValidationError",
    "NotFoundError",
    "StateConflictError",
    "TransientSourceError",
]
