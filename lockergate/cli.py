from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from typing import Any, Dict, Optional
from urllib import error, parse, request

DEFAULT_API_URL = "http://127.0.0.1:8000"


def _api_request(
    *,
    base_url: str,
    path: str,
    method: str = "GET",
    json_body: Optional[Dict[str, Any]] = None,
    timeout: float = 15,
) -> Any:
    url = base_url.rstrip("/") + path
    headers: Dict[str, str] = {"Accept": "application/json"}
    data: Optional[bytes] = None

    if json_body is not None:
        data = json.dumps(json_body).encode("utf-8")
        headers["Content-Type"] = "application/json"

    req = request.Request(url=url, method=method.upper(), data=data, headers=headers)
    try:
        with request.urlopen(req, timeout=timeout) as response:
            body = response.read().decode("utf-8")
            return json.loads(body) if body else {}
    except error.HTTPError as exc:
        payload = exc.read().decode("utf-8")
        detail = payload
        try:
            parsed = json.loads(payload)
            if isinstance(parsed, dict) and "error" in parsed:
                detail = str(parsed["error"])
        except json.JSONDecodeError:
            pass
        raise RuntimeError(f"HTTP {exc.code}: {detail}") from exc


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _device_path(device_id: str) -> str:
    return parse.quote(device_id, safe="")


def cmd_issue(args: argparse.Namespace) -> int:
    body: Dict[str, Any] = {"deviceId": args.device_id, "wantUrl": args.url}
    if args.tenant:
        body["tenantId"] = args.tenant
    if args.validity_ms is not None:
        body["validityMs"] = args.validity_ms
    _print_json(_api_request(base_url=args.api, path="/api/qr-sessions", method="POST", json_body=body))
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.api,
        path="/api/qr/scan",
        method="POST",
        json_body={"code": args.code},
    )
    _print_json(result)
    return 0 if result.get("ok") else 2


def cmd_next_command(args: argparse.Namespace) -> int:
    _print_json(
        _api_request(base_url=args.api, path=f"/api/lockers/{_device_path(args.device_id)}/next-command")
    )
    return 0


def cmd_ack(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.api,
        path=f"/api/commands/{args.command_id}/ack",
        method="POST",
        json_body={"success": not args.failed},
    )
    _print_json(result)
    return 0


def cmd_enqueue(args: argparse.Namespace) -> int:
    body: Dict[str, Any] = {"action": args.action}
    if args.requested_by:
        body["requestedBy"] = args.requested_by
    _print_json(
        _api_request(
            base_url=args.api,
            path=f"/api/lockers/{_device_path(args.device_id)}/commands",
            method="POST",
            json_body=body,
        )
    )
    return 0


def cmd_command(args: argparse.Namespace) -> int:
    _print_json(_api_request(base_url=args.api, path=f"/api/commands/{args.command_id}"))
    return 0


def cmd_device_poll(args: argparse.Namespace) -> int:
    """Act like a locker agent: poll, report each command, acknowledge it."""
    path = f"/api/lockers/{_device_path(args.device_id)}/next-command"
    handled = 0
    while True:
        try:
            result = _api_request(base_url=args.api, path=path, timeout=args.timeout)
        except (RuntimeError, error.URLError) as exc:
            print(f"poll failed: {exc}", file=sys.stderr)
            result = {}
        command = result.get("command") if isinstance(result, dict) else None
        if command:
            print(f"{command['deviceId']}: {command['action']} (command {command['id']})")
            try:
                _api_request(
                    base_url=args.api,
                    path=f"/api/commands/{command['id']}/ack",
                    method="POST",
                    json_body={"success": True},
                    timeout=args.timeout,
                )
            except (RuntimeError, error.URLError) as exc:
                # still PENDING on the server, so the next poll returns it again
                print(f"ack failed for command {command['id']}: {exc}", file=sys.stderr)
                if args.once:
                    return 1
                time.sleep(args.interval)
                continue
            handled += 1
            if args.max_commands and handled >= args.max_commands:
                return 0
            continue
        if args.once:
            return 0
        time.sleep(args.interval)


def cmd_prune(args: argparse.Namespace) -> int:
    from lockergate.config import get_settings
    from lockergate.logger import configure_logging
    from lockergate.runtime import HousekeepingController

    settings = get_settings()
    configure_logging(settings.log_level, None)
    if args.session_retention is not None:
        settings = settings.model_copy(update={"session_retention_seconds": args.session_retention})
    asyncio.run(HousekeepingController(settings).run_once())
    return 0


def _add_api_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--api", default=DEFAULT_API_URL, help="LockerGate API base URL")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lockergate-cli")
    sub = parser.add_subparsers(dest="command", required=True)

    issue = sub.add_parser("issue", help="Issue a single-use QR session for a locker")
    _add_api_arg(issue)
    issue.add_argument("device_id")
    issue.add_argument("--tenant")
    issue.add_argument("--validity-ms", type=int)
    issue.add_argument("--url", action="store_true", help="Return a scan URL instead of the raw code")
    issue.set_defaults(func=cmd_issue)

    scan = sub.add_parser("scan", help="Consume a QR code and queue an OPEN command")
    _add_api_arg(scan)
    scan.add_argument("code")
    scan.set_defaults(func=cmd_scan)

    next_command = sub.add_parser("next-command", help="Show the oldest pending command")
    _add_api_arg(next_command)
    next_command.add_argument("device_id")
    next_command.set_defaults(func=cmd_next_command)

    ack = sub.add_parser("ack", help="Acknowledge a delivered command")
    _add_api_arg(ack)
    ack.add_argument("command_id")
    ack.add_argument("--failed", action="store_true", help="Report that the physical action failed")
    ack.set_defaults(func=cmd_ack)

    enqueue = sub.add_parser("enqueue", help="Queue a command without a QR session")
    _add_api_arg(enqueue)
    enqueue.add_argument("device_id")
    enqueue.add_argument("--action", choices=["OPEN", "CLOSE"], default="OPEN")
    enqueue.add_argument("--requested-by")
    enqueue.set_defaults(func=cmd_enqueue)

    command = sub.add_parser("command", help="Show a command's state")
    _add_api_arg(command)
    command.add_argument("command_id")
    command.set_defaults(func=cmd_command)

    device_poll = sub.add_parser("device-poll", help="Simulate a locker polling for commands")
    _add_api_arg(device_poll)
    device_poll.add_argument("device_id")
    device_poll.add_argument("--interval", type=float, default=2.0)
    device_poll.add_argument("--timeout", type=float, default=5.0)
    device_poll.add_argument("--once", action="store_true")
    device_poll.add_argument("--max-commands", type=int, default=0)
    device_poll.set_defaults(func=cmd_device_poll)

    prune = sub.add_parser("prune", help="Run session/event retention once against DATABASE_URL")
    prune.add_argument("--session-retention", type=int)
    prune.set_defaults(func=cmd_prune)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    try:
        exit_code = args.func(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
