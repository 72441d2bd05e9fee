from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from time import perf_counter
from types import TracebackType
from typing import Any, Dict, Iterator, Optional

ROOT_LOGGER_NAME = "lockergate"

_LEVEL_SYMBOLS: Dict[int, str] = {
    logging.DEBUG: "(?)",
    logging.INFO: "(*)",
    logging.WARNING: "(!)",
    logging.ERROR: "(x)",
    logging.CRITICAL: "(X)",
}

# fields rendered as fixed columns ahead of the free-form key/value tail
_PINNED_FIELDS = ("request_id", "device_id")

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


class _GateFormatter(logging.Formatter):
    """Renders `time | LEVEL | category | req | device | (*) event | message | key: value`.

    Lines without a request or device keep a `-` placeholder so the columns
    line up when grepping a locker's history out of a busy log.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        fields = dict(getattr(record, "fields", {}) or {})
        symbol = _LEVEL_SYMBOLS.get(record.levelno, "(?)")
        event = getattr(record, "event", "") or record.getMessage()

        parts = [
            created.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"{record.levelname:<8}",
            str(getattr(record, "category", record.name)),
        ]
        parts.extend(str(fields.pop(name, None) or "-") for name in _PINNED_FIELDS)
        parts.append(f"{symbol} {event}")
        if getattr(record, "event", "") and record.getMessage():
            parts.append(record.getMessage())
        parts.extend(f"{key}: {value}" for key, value in fields.items() if value is not None)

        formatted = " | ".join(parts)
        if record.exc_info:
            return f"{formatted}\n{self.formatException(record.exc_info)}"
        return formatted


class Operation:
    """Times one service call and reports how it ended.

    ``note`` logs an intermediate step. ``conclude`` names a non-success
    outcome such as a rejected scan; it is carried into the completion line so
    every operation ends with exactly one ``outcome`` field.
    """

    def __init__(self, logger: "BoundLogger", name: str, message: str, fields: Dict[str, Any]):
        self._logger = logger
        self.name = name
        self._message = message
        self._fields = fields
        self.outcome = "ok"
        self._started = 0.0

    async def __aenter__(self) -> "Operation":
        self._started = perf_counter()
        self._logger.debug(f"{self.name}.start", self._message, **self._fields)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        duration_ms = round((perf_counter() - self._started) * 1000, 1)
        if exc_type is None:
            self._logger.info(
                f"{self.name}.done",
                self._message,
                outcome=self.outcome,
                duration_ms=duration_ms,
                **self._fields,
            )
            return
        self._logger.error(
            f"{self.name}.error",
            self._message,
            outcome="error",
            duration_ms=duration_ms,
            error_type=exc_type.__name__,
            **self._fields,
        )

    def note(self, step: str, message: str, **fields: Any) -> None:
        self._logger.debug(f"{self.name}:{step}", message, **fields)

    def conclude(self, outcome: str, message: str, *, warn: bool = False, **fields: Any) -> None:
        self.outcome = outcome
        log = self._logger.warning if warn else self._logger.info
        log(f"{self.name}:{outcome}", message, **fields)


class BoundLogger:
    def __init__(self, category: str) -> None:
        self._category = category

    @contextmanager
    def context(self, **fields: Any) -> Iterator[None]:
        token = _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **fields})
        try:
            yield
        finally:
            _LOG_CONTEXT.reset(token)

    def operation(self, name: str, message: str, **fields: Any) -> Operation:
        return Operation(self, name, message, fields)

    def debug(self, event: str, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, message, fields)

    def info(self, event: str, message: str, **fields: Any) -> None:
        self._log(logging.INFO, event, message, fields)

    def warning(self, event: str, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, message, fields)

    def error(self, event: str, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, message, fields)

    def exception(self, event: str, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, message, fields, exc_info=True)

    def _log(
        self,
        severity: int,
        event: str,
        message: str,
        fields: Dict[str, Any],
        exc_info: Any = None,
    ) -> None:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        if not logger.isEnabledFor(severity):
            return
        logger.log(
            severity,
            message,
            extra={
                "category": self._category,
                "event": event,
                "fields": {**_LOG_CONTEXT.get(), **fields},
            },
            exc_info=exc_info,
        )


def configure_logging(log_level: str, log_file: Optional[str]) -> None:
    formatter = _GateFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers[:] = handlers

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.handlers[:] = handlers
    logger.propagate = False

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True


def get_logger(category: str) -> BoundLogger:
    return BoundLogger(category)
