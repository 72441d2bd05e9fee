from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from lockergate.dependencies import get_db_session
from lockergate.schemas.events import EventOut
from lockergate.services import events as event_service
from lockergate.services.devices import InvalidDeviceError, resolve_device_id

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=List[EventOut])
async def list_events(
    limit: int = 200,
    category: Optional[str] = None,
    device_id: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
) -> List[EventOut]:
    """Audit trail, newest first. ``device_id`` accepts any form of a locker id."""
    locker = None
    if device_id is not None:
        try:
            locker = resolve_device_id(device_id)
        except InvalidDeviceError as exc:
            raise HTTPException(status_code=400, detail="invalid_device") from exc
    events = await event_service.list_events(
        session,
        limit=max(1, min(limit, 1000)),
        category=category,
        device_id=locker,
    )
    return [EventOut.model_validate(event) for event in events]
