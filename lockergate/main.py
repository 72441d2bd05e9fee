from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError
from starlette.exceptions import HTTPException

from lockergate.config import get_settings
from lockergate.dependencies import StoreUnavailableError
from lockergate.logger import configure_logging, get_logger
from lockergate.metrics import observe_http_request
from lockergate.routes import commands, events, sessions, system
from lockergate.runtime import HousekeepingController

settings = get_settings()
configure_logging(settings.log_level, settings.log_file)
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app.startup", "Starting app", env=settings.app_env, version=settings.app_version)
    if not settings.public_base_url:
        logger.warning(
            "config.base_url",
            "PUBLIC_BASE_URL is not set; scan URLs will be derived from request headers",
        )
    housekeeping = HousekeepingController(settings)
    await housekeeping.start()
    try:
        yield
    finally:
        await housekeeping.stop()
        logger.info("app.shutdown", "Shutting down app")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(StoreUnavailableError)
@app.exception_handler(DBAPIError)
async def store_unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "store.unavailable",
        "Store call failed",
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=503, content={"ok": False, "error": "store_unavailable"})


@app.middleware("http")
async def request_logging(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid4())
    client: Optional[str] = None
    if request.client:
        client = request.client.host

    route_path = request.url.path
    start = perf_counter()
    with logger.context(request_id=request_id):
        logger.info(
            "request.start",
            "Started",
            method=request.method,
            path=route_path,
            client=client,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "request.error",
                "Failed",
                method=request.method,
                path=route_path,
                duration_ms=round((perf_counter() - start) * 1000, 1),
                error_type=type(exc).__name__,
            )
            raise

        duration = perf_counter() - start
        route = request.scope.get("route")
        template = getattr(route, "path", route_path)
        observe_http_request(
            method=request.method,
            path=template,
            status=response.status_code,
            duration_seconds=duration,
        )
        logger.info(
            "request.complete",
            "Completed",
            method=request.method,
            path=route_path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 1),
        )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(system.router)
app.include_router(sessions.router)
app.include_router(commands.router)
app.include_router(events.router)
