"""Outbound notifications about item state changes."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol, Sequence
from urllib.parse import quote

from .models import Drawing, DrawItem, ItemState

logger = logging.getLogger(__name__)


class Announcer(Protocol):
    """Transport that publishes drawing updates (chat embed, webhook, ...)."""

    def notify_state_changed(self, drawing: Drawing, item: DrawItem) -> None: ...

    def notify_finalized(
        self, drawing: Drawing, item: DrawItem, winners: Sequence[str]
    ) -> None: ...


def block_link(explorer_url: str, block_id: str) -> str:
    return explorer_url + quote(block_id, safe="")


def describe_item(item: DrawItem) -> str:
    """One-line status of ``item`` as shown next to the prize."""
    entries = len(item.entries)
    if item.state == ItemState.FINALIZED.value:
        return f"ENDED | winners: {len(item.winners or [])} | entries: {entries}"
    if item.state == ItemState.AWAITING_SEED.value:
        if item.target_block_number is not None:
            return (
                f"awaiting block seed (target block {item.target_block_number})"
                f" | entries: {entries}"
            )
        return f"awaiting block seed (target unknown) | entries: {entries}"
    return f"open until {item.ends_at.isoformat()} | entries: {entries}"


class LoggingAnnouncer:
    """Announcer that writes every update to the log."""

    def __init__(self, block_explorer_url: str = "https://tronscan.org/#/block/") -> None:
        self.block_explorer_url = block_explorer_url

    def notify_state_changed(self, drawing: Drawing, item: DrawItem) -> None:
        logger.info(
            "Drawing %s item %s (%s): %s",
            drawing.id,
            item.item_key,
            item.prize,
            describe_item(item),
        )

    def notify_finalized(
        self, drawing: Drawing, item: DrawItem, winners: Sequence[str]
    ) -> None:
        if winners:
            logger.info(
                "Drawing %s item %s (%s) winners: %s",
                drawing.id,
                item.item_key,
                item.prize,
                ", ".join(winners),
            )
        else:
            logger.info(
                "Drawing %s item %s (%s): no valid entries",
                drawing.id,
                item.item_key,
                item.prize,
            )
        if item.seed_block_id:
            logger.info(
                "Seed block %s: %s",
                item.seed_block_number,
                block_link(self.block_explorer_url, item.seed_block_id),
            )


def safe_notify(callback: Callable[..., Any], *args: Any) -> None:
    """Invoke an announcer callback; failures are logged and never propagate."""
    try:
        callback(*args)
    except Exception as exc:
        logger.warning("Announcement %s failed: %s", getattr(callback, "__name__", callback), exc)


__all__ = [
    "Announcer",
    "LoggingAnnouncer",
    "block_link",
    "describe_item",
    "safe_notify",
]
