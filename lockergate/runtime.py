from __future__ import annotations

import asyncio

from sqlalchemy.exc import SQLAlchemyError

from lockergate.config import Settings
from lockergate.dependencies import get_sessionmaker
from lockergate.logger import get_logger
from lockergate.services.housekeeping import run_housekeeping

_logger = get_logger("runtime")


class HousekeepingController:
    """Background retention loop for stale sessions and old audit events."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def enabled(self) -> bool:
        return self._settings.housekeeping_enabled

    async def start(self) -> None:
        if not self.enabled:
            _logger.info("housekeeping.disabled", "Housekeeping loop is disabled")
            return
        self._stop.clear()
        self._tasks.append(asyncio.create_task(self._loop()))
        _logger.info(
            "housekeeping.start",
            "Started housekeeping loop",
            interval_seconds=self._settings.housekeeping_interval_seconds,
            session_retention_seconds=self._settings.session_retention_seconds,
            event_retention_days=self._settings.event_retention_days,
        )

    async def stop(self) -> None:
        self._stop.set()
        if not self._tasks:
            return
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        _logger.info("housekeeping.stop", "Stopped housekeeping loop")

    async def run_once(self) -> None:
        sessionmaker = get_sessionmaker(self._settings.database_url)
        async with sessionmaker() as session:
            report = await run_housekeeping(
                session,
                session_retention_seconds=self._settings.session_retention_seconds,
                event_retention_days=self._settings.event_retention_days,
            )
        _logger.info(
            "housekeeping.tick",
            "Housekeeping pass finished",
            sessions_deleted=report.sessions_deleted,
            events_deleted=report.events_deleted,
        )

    async def _loop(self) -> None:
        interval = self._settings.housekeeping_interval_seconds
        while not self._stop.is_set():
            try:
                await self.run_once()
            except SQLAlchemyError as exc:
                _logger.warning(
                    "housekeeping.error",
                    "Housekeeping pass failed; will retry next interval",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
