from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from lockergate.config import Settings, get_settings
from lockergate.dependencies import get_db_session, with_store_timeout
from lockergate.schemas.dispatch import (
    AckOut,
    AckRequest,
    CommandCreate,
    CommandDetailOut,
    CommandOut,
    NextCommandOut,
)
from lockergate.services import commands as command_service
from lockergate.services.devices import InvalidDeviceError

router = APIRouter(prefix="/api", tags=["commands"])


@router.get("/lockers/{device_id}/next-command", response_model=NextCommandOut)
async def next_command(
    device_id: str,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> NextCommandOut:
    try:
        command = await with_store_timeout(
            command_service.next_command(session, device_id),
            settings.store_timeout_seconds,
        )
    except InvalidDeviceError as exc:
        raise HTTPException(status_code=400, detail="invalid_device") from exc
    if command is None:
        return NextCommandOut(command=None)
    return NextCommandOut(command=CommandOut.from_command(command))


@router.post(
    "/lockers/{device_id}/commands",
    response_model=CommandDetailOut,
    status_code=status.HTTP_201_CREATED,
)
async def enqueue_command(
    device_id: str,
    payload: CommandCreate,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> CommandDetailOut:
    try:
        command = await with_store_timeout(
            command_service.enqueue_command(
                session,
                device_id_raw=device_id,
                action=payload.action,
                requested_by=payload.requested_by,
            ),
            settings.store_timeout_seconds,
        )
    except InvalidDeviceError as exc:
        raise HTTPException(status_code=400, detail="invalid_device") from exc
    return CommandDetailOut.from_command(command)


@router.get("/commands/{command_id}", response_model=CommandDetailOut)
async def get_command(
    command_id: str,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> CommandDetailOut:
    command = await with_store_timeout(
        command_service.get_command(session, command_id),
        settings.store_timeout_seconds,
    )
    if command is None:
        raise HTTPException(status_code=404, detail="not_found")
    return CommandDetailOut.from_command(command)


@router.post("/commands/{command_id}/ack", response_model=AckOut)
async def acknowledge_command(
    command_id: str,
    payload: AckRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> AckOut:
    success = payload.success if payload else False
    result = await with_store_timeout(
        command_service.acknowledge_command(session, command_id, success=success),
        settings.store_timeout_seconds,
    )
    if result is None:
        raise HTTPException(status_code=404, detail="not_found")
    return AckOut(success=success, already_acknowledged=result.already_acknowledged)
