from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .db.utils import resolve_sqlite_url
from .errors import ValidationError

# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[1]

DEFAULT_DB_URL = "sqlite:///./blockdraw.db"
DEFAULT_TRON_GRID_API = "https://api.trongrid.io"
DEFAULT_BLOCK_EXPLORER_URL = "https://tronscan.org/#/block/"


def _read_int(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _read_float(
    env: Mapping[str, str], name: str, default: Optional[float]
) -> Optional[float]:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime configuration of the drawing service.

    Attributes
    ----------
    db_url : str
        SQLAlchemy database URL. Relative SQLite paths are resolved against
        the project root.
    tron_grid_api : str
        Base URL of the TronGrid-compatible HTTP API used as block source.
    tron_api_key : Optional[str]
        Optional API key sent as ``TRON-PRO-API-KEY``.
    block_explorer_url : str
        Prefix used to build public links to a seed block.
    seed_block_offset : int
        Number of blocks ahead of the current block chosen as seed target.
    seed_poll_interval : float
        Seconds the seed queue waits between attempts on the same item.
    seed_max_wait : Optional[float]
        Seconds after which a still-waiting item is escalated in the logs.
        ``None`` disables escalation. Retrying never stops.
    source_timeout : float
        Per-request HTTP timeout for the block source.
    default_duration_minutes : int
        Duration applied to items created without end time or duration.
    """

    db_url: str = DEFAULT_DB_URL
    tron_grid_api: str = DEFAULT_TRON_GRID_API
    tron_api_key: Optional[str] = None
    block_explorer_url: str = DEFAULT_BLOCK_EXPLORER_URL
    seed_block_offset: int = 2
    seed_poll_interval: float = 10.0
    seed_max_wait: Optional[float] = None
    source_timeout: float = 45.0
    default_duration_minutes: int = 5

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the process environment (and ``.env``)."""
        if env is None:
            load_dotenv()
            env = os.environ

        db_url = env.get("DB_URL", "").strip() or DEFAULT_DB_URL
        api = env.get("TRON_GRID_API", "").strip() or DEFAULT_TRON_GRID_API
        api_key = env.get("TRON_API_KEY", "").strip() or None
        explorer = (
            env.get("BLOCK_EXPLORER_URL", "").strip() or DEFAULT_BLOCK_EXPLORER_URL
        )

        return Settings(
            db_url=resolve_sqlite_url(db_url, ROOT_DIR),
            tron_grid_api=api.rstrip("/"),
            tron_api_key=api_key,
            block_explorer_url=explorer,
            seed_block_offset=_read_int(env, "SEED_BLOCK_OFFSET", 2, minimum=1),
            seed_poll_interval=_read_float(env, "SEED_POLL_INTERVAL", 10.0) or 10.0,
            seed_max_wait=_read_float(env, "SEED_MAX_WAIT", None),
            source_timeout=_read_float(env, "SOURCE_TIMEOUT", 45.0) or 45.0,
            default_duration_minutes=_read_int(
                env, "DEFAULT_DURATION_MINUTES", 5, minimum=1
            ),
        )


__all__ = ["Settings", "ROOT_DIR"]
