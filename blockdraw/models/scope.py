from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import Base
from .types import UTCDateTime
from .utils import utcnow


class ScopePolicy(Base):
    """Per-scope defaults applied to every drawing hosted in that scope."""

    __tablename__ = "scope_policies"

    scope_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    required_capability: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    """Capability required to join items that do not set their own."""

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    @classmethod
    def get(cls, session: Session, scope_id: str) -> Optional["ScopePolicy"]:
        return session.scalar(select(cls).where(cls.scope_id == scope_id))
