from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from lockergate.logger import get_logger
from lockergate.models.qr_session import QrSession, SessionState
from lockergate.services.events import prune_old_events
from lockergate.utils import utcnow

_logger = get_logger("services.housekeeping")


@dataclass(frozen=True)
class PruneReport:
    sessions_deleted: int
    events_deleted: int


async def prune_expired_sessions(
    session: AsyncSession,
    *,
    retention_seconds: int,
    now: Optional[datetime] = None,
) -> int:
    """Delete sessions that expired or were consumed more than ``retention_seconds`` ago.

    Commands are left alone; their ``origin_token_id`` simply stops resolving.
    Scans never depend on this running.
    """
    cutoff = (now or utcnow()) - timedelta(seconds=max(0, retention_seconds))
    result = await session.execute(
        delete(QrSession)
        .where(
            or_(
                and_(
                    QrSession.state == SessionState.NEW.value,
                    QrSession.expires_at < cutoff,
                ),
                and_(
                    QrSession.state == SessionState.CONSUMED.value,
                    QrSession.consumed_at < cutoff,
                ),
            )
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    deleted = int(result.rowcount or 0)
    if deleted:
        _logger.info(
            "sessions.prune",
            "Pruned stale QR sessions",
            deleted=deleted,
            cutoff=cutoff.isoformat(),
        )
    return deleted


async def run_housekeeping(
    session: AsyncSession,
    *,
    session_retention_seconds: int,
    event_retention_days: int,
) -> PruneReport:
    sessions_deleted = await prune_expired_sessions(
        session, retention_seconds=session_retention_seconds
    )
    events_deleted = await prune_old_events(session, retention_days=event_retention_days)
    return PruneReport(sessions_deleted=sessions_deleted, events_deleted=events_deleted)
