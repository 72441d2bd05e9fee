from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lockergate.models.base import Base, TimestampMixin


class SessionState(str, Enum):
    NEW = "NEW"
    CONSUMED = "CONSUMED"


class QrSession(TimestampMixin, Base):
    """Single-use authorization token handed to a person as a QR code.

    Expiry is never stored: a session is usable while ``state`` is NEW and the
    current time is before ``expires_at``. Only the sha256 of the raw code is
    persisted.
    """

    __tablename__ = "qr_sessions"
    __table_args__ = (Index("ix_qr_sessions_expires_at", "expires_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code_hash: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    device_id: Mapped[str] = mapped_column(String(64), index=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    state: Mapped[str] = mapped_column(String(16), default=SessionState.NEW.value)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
