from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lockergate.models.base import Base, TimestampMixin


class CommandAction(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"


class CommandStatus(str, Enum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"


class Command(TimestampMixin, Base):
    """Queued instruction for a locker. PENDING until the device acknowledges it."""

    __tablename__ = "commands"
    __table_args__ = (
        Index("ix_commands_device_status_created", "device_id", "status", "created_at"),
    )

    # autoincrement keeps insertion order for FIFO tie breaks
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16), default=CommandStatus.PENDING.value)
    origin_token_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    requested_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    ack_success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ack_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
