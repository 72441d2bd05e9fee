from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lockergate.config import Settings, get_settings
from lockergate.dependencies import get_db_session, with_store_timeout
from lockergate.logger import get_logger
from lockergate.schemas.dispatch import ScanOut, ScanRequest, SessionCreate, SessionOut
from lockergate.security import CodeGuessLimiter
from lockergate.services import sessions as session_service
from lockergate.services.devices import InvalidDeviceError
from lockergate.services.sessions import ScanFailure

router = APIRouter(prefix="/api", tags=["sessions"])
_logger = get_logger("api.sessions")

_settings = get_settings()
SCAN_LIMITER = CodeGuessLimiter(
    max_misses=_settings.scan_rate_limit_misses,
    window_seconds=_settings.scan_rate_limit_window_seconds,
    lockout_seconds=_settings.scan_rate_limit_lockout_seconds,
)


def _client_ip(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _scan_base_url(request: Request, settings: Settings) -> str:
    if settings.public_base_url:
        return settings.public_base_url
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme or "http"
    host = request.headers.get("host") or request.url.netloc
    return f"{proto.split(',')[0].strip()}://{host}"


@router.post("/qr-sessions", response_model=SessionOut)
async def issue_session(
    payload: SessionCreate,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> SessionOut:
    scan_base_url = _scan_base_url(request, settings) if payload.want_url else None
    try:
        issued = await with_store_timeout(
            session_service.issue_session(
                session,
                device_id_raw=payload.device_id,
                tenant_id=str(payload.tenant_id) if payload.tenant_id is not None else None,
                validity_ms=payload.validity_ms,
                scan_base_url=scan_base_url,
            ),
            settings.store_timeout_seconds,
        )
    except InvalidDeviceError as exc:
        raise HTTPException(status_code=400, detail="invalid_device") from exc
    return SessionOut(
        session_id=issued.session_id,
        device_id=issued.device_id,
        validity_ms=issued.validity_ms,
        expires_at=issued.expires_at,
        payload=issued.payload,
    )


async def _scan(
    code: object,
    request: Request,
    session: AsyncSession,
    settings: Settings,
) -> ScanOut:
    client_key = f"ip:{_client_ip(request)}"
    retry_after = SCAN_LIMITER.retry_after(client_key)
    if retry_after:
        raise HTTPException(
            status_code=429,
            detail="scan_rate_limited",
            headers={"Retry-After": str(retry_after)},
        )

    result = await with_store_timeout(
        session_service.consume_session(session, None if code is None else str(code)),
        settings.store_timeout_seconds,
    )
    if result.failure is ScanFailure.MISSING_CODE:
        raise HTTPException(status_code=400, detail=ScanFailure.MISSING_CODE.value)
    if not result.ok:
        if result.failure is ScanFailure.NOT_FOUND:
            SCAN_LIMITER.record_miss(client_key)
        error = result.outward_error(merge_already_used=settings.scan_merge_already_used)
        _logger.warning(
            "scan.reject",
            "Scan rejected",
            reason=result.failure.value if result.failure else None,
            outward=error,
            session_id=result.session_id,
        )
        # soft failure: status stays 200 so codes cannot be probed by status
        return ScanOut(ok=False, error=error)

    SCAN_LIMITER.forget(client_key)
    command = result.command
    return ScanOut(
        ok=True,
        command_id=str(command.id),
        device_id=command.device_id,
        action=command.action,
    )


@router.get("/qr/scan", response_model=ScanOut, response_model_exclude_none=True)
async def scan_by_query(
    request: Request,
    c: str | None = None,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> ScanOut:
    return await _scan(c, request, session, settings)


@router.post("/qr/scan", response_model=ScanOut, response_model_exclude_none=True)
async def scan_by_body(
    request: Request,
    payload: ScanRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> ScanOut:
    return await _scan(payload.code if payload else None, request, session, settings)
