from __future__ import annotations

import logging

import pytest

from lockergate.logger import ROOT_LOGGER_NAME, _GateFormatter, get_logger


class _Collector(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def collected():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handler = _Collector()
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        yield handler.records
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous)


@pytest.mark.asyncio
async def test_operation_reports_concluded_outcome(collected):
    async with get_logger("tests").operation("session.consume", "Consuming") as op:
        op.conclude("already_used", "Rejected scan", warn=True, device_id="LOCKER_007")

    done = [record for record in collected if record.event == "session.consume.done"]
    assert len(done) == 1
    assert done[0].fields["outcome"] == "already_used"
    rejected = [record for record in collected if record.levelno == logging.WARNING]
    assert [record.event for record in rejected] == ["session.consume:already_used"]


@pytest.mark.asyncio
async def test_operation_error_is_logged(collected):
    with pytest.raises(RuntimeError):
        async with get_logger("tests").operation("command.ack", "Acknowledging"):
            raise RuntimeError("boom")

    errors = [record for record in collected if record.levelno == logging.ERROR]
    assert errors[0].event == "command.ack.error"
    assert errors[0].fields["error_type"] == "RuntimeError"


def test_formatter_pins_request_and_device(collected):
    logger = get_logger("api.sessions")
    with logger.context(request_id="req-1"):
        logger.info("scan.reject", "Scan rejected", device_id="LOCKER_007", outward="already_used")

    line = _GateFormatter().format(collected[-1])
    columns = line.split(" | ")
    assert columns[2:6] == ["api.sessions", "req-1", "LOCKER_007", "(*) scan.reject"]
    assert columns[-1] == "outward: already_used"
