from __future__ import annotations

from urllib import error

from lockergate import cli

_COMMAND = {"id": "5", "deviceId": "LOCKER_007", "action": "OPEN"}


def test_device_poll_survives_failed_ack(monkeypatch, capsys):
    calls = []
    acks = iter([error.URLError("connection reset"), {"ok": True}])

    def fake_request(*, base_url, path, method="GET", json_body=None, timeout=15):
        calls.append((method, path))
        if path.endswith("/ack"):
            outcome = next(acks)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return {"ok": True, "command": _COMMAND}

    monkeypatch.setattr(cli, "_api_request", fake_request)
    monkeypatch.setattr(cli.time, "sleep", lambda seconds: None)
    args = cli.build_parser().parse_args(["device-poll", "7", "--max-commands", "1"])

    assert args.func(args) == 0
    assert calls == [
        ("GET", "/api/lockers/7/next-command"),
        ("POST", "/api/commands/5/ack"),
        ("GET", "/api/lockers/7/next-command"),
        ("POST", "/api/commands/5/ack"),
    ]
    assert "ack failed for command 5" in capsys.readouterr().err


def test_device_poll_once_reports_failed_ack(monkeypatch):
    def fake_request(*, base_url, path, method="GET", json_body=None, timeout=15):
        if path.endswith("/ack"):
            raise RuntimeError("HTTP 503: store_unavailable")
        return {"ok": True, "command": _COMMAND}

    monkeypatch.setattr(cli, "_api_request", fake_request)
    args = cli.build_parser().parse_args(["device-poll", "7", "--once"])

    assert args.func(args) == 1
