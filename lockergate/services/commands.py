from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lockergate import metrics
from lockergate.logger import get_logger
from lockergate.models.command import Command, CommandAction, CommandStatus
from lockergate.services.devices import resolve_device_id
from lockergate.services.events import record_event
from lockergate.utils import utcnow

_logger = get_logger("services.commands")

_MAX_COMMAND_ID = 2_147_483_647


@dataclass(frozen=True)
class AckResult:
    command: Command
    already_acknowledged: bool


def _parse_command_id(command_id: Union[int, str, None]) -> Optional[int]:
    if command_id is None:
        return None
    try:
        parsed = int(str(command_id).strip())
    except ValueError:
        return None
    return parsed if 0 < parsed <= _MAX_COMMAND_ID else None


async def get_command(session: AsyncSession, command_id: Union[int, str]) -> Optional[Command]:
    parsed = _parse_command_id(command_id)
    if parsed is None:
        return None
    return await session.get(Command, parsed, populate_existing=True)


async def enqueue_command(
    session: AsyncSession,
    *,
    device_id_raw: object,
    action: CommandAction = CommandAction.OPEN,
    requested_by: Optional[str] = None,
) -> Command:
    """Queue a command for a device on behalf of an actor other than a scanned token."""
    device_id = resolve_device_id(device_id_raw)
    action = CommandAction(action)
    async with _logger.operation(
        "command.enqueue",
        "Queueing command",
        device_id=device_id,
        action=action.value,
        requested_by=requested_by or "unknown",
    ) as op:
        command = Command(
            device_id=device_id,
            action=action.value,
            status=CommandStatus.PENDING.value,
            requested_by=requested_by,
        )
        session.add(command)
        await session.flush()
        await record_event(
            session,
            category="commands",
            name="command.enqueue",
            device_id=device_id,
            command_id=command.id,
            action=action.value,
            requested_by=requested_by,
        )
        await session.commit()
        op.note("db.commit", "Committed command", command_id=command.id)

    metrics.record_command_enqueued(source="direct", action=action.value)
    return command


async def next_command(session: AsyncSession, device_id_raw: object) -> Optional[Command]:
    """Oldest PENDING command for the device, or None. Never mutates anything."""
    device_id = resolve_device_id(device_id_raw)
    result = await session.execute(
        select(Command)
        .where(
            Command.device_id == device_id,
            Command.status == CommandStatus.PENDING.value,
        )
        .order_by(Command.created_at.asc(), Command.id.asc())
        .limit(1)
    )
    command = result.scalar_one_or_none()
    _logger.debug(
        "command.poll",
        "Served device poll",
        device_id=device_id,
        command_id=command.id if command is not None else None,
    )
    return command


async def acknowledge_command(
    session: AsyncSession,
    command_id: Union[int, str],
    *,
    success: bool,
    now: Optional[datetime] = None,
) -> Optional[AckResult]:
    """Mark a command DELIVERED.

    ``success`` is stored as telemetry only; a failed physical action is not
    re-queued. Acknowledging an already delivered command is a no-op that keeps
    the first ack timestamp and telemetry. Returns None for unknown ids.
    """
    parsed = _parse_command_id(command_id)
    if parsed is None:
        return None

    async with _logger.operation(
        "command.ack",
        "Acknowledging command",
        command_id=parsed,
        success=success,
    ) as op:
        result = await session.execute(
            update(Command)
            .where(Command.id == parsed, Command.status == CommandStatus.PENDING.value)
            .values(
                status=CommandStatus.DELIVERED.value,
                ack_at=now or utcnow(),
                ack_success=bool(success),
            )
            .execution_options(synchronize_session=False)
        )
        delivered_now = result.rowcount == 1
        command = await session.get(Command, parsed, populate_existing=True)
        if command is None:
            op.conclude("not_found", "Acknowledged unknown command", warn=True)
            return None
        if delivered_now:
            await record_event(
                session,
                category="commands",
                name="command.ack",
                device_id=command.device_id,
                command_id=parsed,
                success=bool(success),
            )
            await session.commit()
            op.note("db.commit", "Marked command delivered", device_id=command.device_id)
        else:
            op.conclude("duplicate", "Command was already acknowledged")

    metrics.record_ack(success=bool(success), duplicate=not delivered_now)
    return AckResult(command=command, already_acknowledged=not delivered_now)
