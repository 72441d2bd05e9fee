from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from lockergate.logger import get_logger
from lockergate.models.event import Event
from lockergate.utils import utcnow

_logger = get_logger("services.events")


async def list_events(
    session: AsyncSession,
    limit: int = 200,
    category: Optional[str] = None,
    device_id: Optional[str] = None,
) -> List[Event]:
    """Newest first, optionally narrowed to one category and/or one locker."""
    query = select(Event)
    if category:
        query = query.where(Event.category == category)
    if device_id:
        query = query.where(Event.device_id == device_id)
    result = await session.execute(
        query.order_by(Event.created_at.desc(), Event.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def record_event(
    session: AsyncSession,
    *,
    category: str,
    name: str,
    device_id: Optional[str] = None,
    level: str = "INFO",
    **fields: Any,
) -> Event:
    """Stage an audit event on ``session``; the caller owns the commit."""
    event = Event(
        id=f"ev-{uuid4().hex}",
        category=category,
        name=name,
        level=level,
        device_id=device_id,
        fields={key: value for key, value in fields.items() if value is not None},
    )
    session.add(event)
    return event


async def prune_old_events(
    session: AsyncSession,
    *,
    retention_days: int,
    now: Optional[datetime] = None,
) -> int:
    """Delete audit events older than ``retention_days``; 0 keeps them forever."""
    if retention_days <= 0:
        return 0
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    result = await session.execute(
        delete(Event)
        .where(Event.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    deleted = int(result.rowcount or 0)
    if deleted:
        _logger.info(
            "events.prune",
            "Pruned audit events past retention",
            retention_days=retention_days,
            deleted=deleted,
        )
    return deleted
