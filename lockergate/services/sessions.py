from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from urllib.parse import urlencode
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lockergate import metrics
from lockergate.config import get_settings
from lockergate.logger import get_logger
from lockergate.models.command import Command, CommandAction, CommandStatus
from lockergate.models.qr_session import QrSession, SessionState
from lockergate.services.devices import resolve_device_id
from lockergate.services.events import record_event
from lockergate.utils import generate_code, hash_code, normalize_utc, utcnow

_logger = get_logger("services.sessions")

SCAN_PATH = "/api/qr/scan"
EXPIRED_OR_INVALID = "expired_or_invalid"


class ScanFailure(str, Enum):
    MISSING_CODE = "missing_code"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"


@dataclass(frozen=True)
class IssuedSession:
    session_id: str
    device_id: str
    code: str
    payload: str
    validity_ms: int
    expires_at: datetime


@dataclass(frozen=True)
class ScanResult:
    """Outcome of a scan. Keeps the precise reason; callers decide what leaks outward."""

    command: Optional[Command] = None
    failure: Optional[ScanFailure] = None
    session_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.command is not None

    def outward_error(self, *, merge_already_used: bool = False) -> str:
        if self.failure is None:
            return ""
        if self.failure is ScanFailure.MISSING_CODE:
            return ScanFailure.MISSING_CODE.value
        if self.failure is ScanFailure.ALREADY_USED and not merge_already_used:
            return ScanFailure.ALREADY_USED.value
        # unknown and expired codes must look identical from outside
        return EXPIRED_OR_INVALID


def clamp_validity_ms(validity_ms: Optional[int]) -> int:
    settings = get_settings()
    if validity_ms is None:
        validity_ms = settings.session_default_validity_ms
    return min(
        settings.session_max_validity_ms,
        max(settings.session_min_validity_ms, int(validity_ms)),
    )


def build_scan_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}{SCAN_PATH}?{urlencode({'c': code})}"


async def issue_session(
    session: AsyncSession,
    *,
    device_id_raw: object,
    tenant_id: Optional[str] = None,
    validity_ms: Optional[int] = None,
    scan_base_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IssuedSession:
    """Persist a NEW single-use session for a device.

    When ``scan_base_url`` is given the payload is a scan URL embedding the
    code, otherwise it is the raw code. Raises ``InvalidDeviceError`` for an
    empty device identifier.
    """
    device_id = resolve_device_id(device_id_raw)
    effective_ms = clamp_validity_ms(validity_ms)
    async with _logger.operation(
        "session.issue",
        "Issuing QR session",
        device_id=device_id,
        validity_ms=effective_ms,
    ) as op:
        code = generate_code(get_settings().session_code_bytes)
        issued_at = now or utcnow()
        qr_session = QrSession(
            id=f"qs-{uuid4().hex[:16]}",
            code_hash=hash_code(code),
            device_id=device_id,
            tenant_id=str(tenant_id) if tenant_id else None,
            state=SessionState.NEW.value,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(milliseconds=effective_ms),
        )
        session.add(qr_session)
        await record_event(
            session,
            category="sessions",
            name="session.issue",
            device_id=device_id,
            session_id=qr_session.id,
            tenant_id=qr_session.tenant_id,
            expires_at=qr_session.expires_at.isoformat(),
        )
        await session.commit()
        op.note("db.commit", "Committed QR session", session_id=qr_session.id)

    as_url = bool(scan_base_url)
    metrics.record_session_issued(as_url=as_url)
    return IssuedSession(
        session_id=qr_session.id,
        device_id=device_id,
        code=code,
        payload=build_scan_url(scan_base_url, code) if scan_base_url else code,
        validity_ms=effective_ms,
        expires_at=qr_session.expires_at,
    )


async def claim_session(session: AsyncSession, session_id: str, *, now: datetime) -> bool:
    """Atomically move a usable session from NEW to CONSUMED.

    The state and expiry checks live in the UPDATE's WHERE clause so the store
    picks exactly one winner among concurrent scans of the same code. A
    read-then-write here would let two scanners both dispatch a command.
    """
    result = await session.execute(
        update(QrSession)
        .where(
            QrSession.id == session_id,
            QrSession.state == SessionState.NEW.value,
            QrSession.expires_at > now,
        )
        .values(state=SessionState.CONSUMED.value, consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _rejection_reason(session: AsyncSession, session_id: str) -> ScanFailure:
    current = await session.get(QrSession, session_id, populate_existing=True)
    if current is None:
        return ScanFailure.NOT_FOUND
    if current.state == SessionState.CONSUMED.value:
        return ScanFailure.ALREADY_USED
    return ScanFailure.EXPIRED


async def consume_session(
    session: AsyncSession,
    code: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> ScanResult:
    """Exchange a scanned code for exactly one OPEN command."""
    raw = str(code or "").strip()
    if not raw:
        metrics.record_scan(result=ScanFailure.MISSING_CODE.value)
        return ScanResult(failure=ScanFailure.MISSING_CODE)

    async with _logger.operation("session.consume", "Consuming QR session") as op:
        lookup = await session.execute(
            select(QrSession).where(QrSession.code_hash == hash_code(raw))
        )
        qr_session = lookup.scalar_one_or_none()
        if qr_session is None:
            op.conclude(ScanFailure.NOT_FOUND.value, "Rejected scan of unknown code", warn=True)
            metrics.record_scan(result=ScanFailure.NOT_FOUND.value)
            return ScanResult(failure=ScanFailure.NOT_FOUND)

        session_id = qr_session.id
        device_id = qr_session.device_id
        expires_at = normalize_utc(qr_session.expires_at)
        current = now or utcnow()
        if not await claim_session(session, session_id, now=current):
            await session.rollback()
            reason = await _rejection_reason(session, session_id)
            op.conclude(
                reason.value,
                "Rejected scan",
                warn=True,
                session_id=session_id,
                device_id=device_id,
                expires_at=expires_at.isoformat() if expires_at else None,
            )
            metrics.record_scan(result=reason.value)
            return ScanResult(failure=reason, session_id=session_id)
        op.note("session.claim", "Claimed QR session", session_id=session_id)

        command = Command(
            device_id=device_id,
            action=CommandAction.OPEN.value,
            status=CommandStatus.PENDING.value,
            origin_token_id=session_id,
        )
        session.add(command)
        await session.flush()
        await record_event(
            session,
            category="sessions",
            name="session.consume",
            device_id=device_id,
            session_id=session_id,
            command_id=command.id,
        )
        await session.commit()
        op.note("db.commit", "Queued command from scan", command_id=command.id)

    metrics.record_scan(result="ok")
    metrics.record_command_enqueued(source="scan", action=CommandAction.OPEN.value)
    return ScanResult(command=command, session_id=session_id)
