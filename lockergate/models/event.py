from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lockergate.models.base import Base, TimestampMixin


class Event(TimestampMixin, Base):
    """Audit record written in the same transaction as the change it describes."""

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_created_at", "created_at"),
        Index("ix_events_device_created", "device_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(String(32), index=True)
    name: Mapped[str] = mapped_column(String(64))
    level: Mapped[str] = mapped_column(String(16), default="INFO")
    device_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    fields: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
