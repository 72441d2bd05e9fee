"""HTTP contract of the dispatch endpoints."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from lockergate.routes import sessions as session_routes
from lockergate.security import CodeGuessLimiter
from lockergate.services import commands as command_service


async def _issue(client, device_id="007", **extra):
    response = await client.post("/api/qr-sessions", json={"deviceId": device_id, **extra})
    assert response.status_code == 200, response.text
    return response.json()


class TestIssueEndpoint:
    @pytest.mark.asyncio
    async def test_issue_returns_code(self, client):
        body = await _issue(client)
        assert body["ok"] is True
        assert body["sessionId"].startswith("qs-")
        assert body["deviceId"] == "LOCKER_007"
        assert body["validityMs"] == 15000
        assert len(body["payload"]) == 32

    @pytest.mark.asyncio
    async def test_issue_clamps_validity(self, client):
        body = await _issue(client, validityMs=10)
        assert body["validityMs"] == 1000

    @pytest.mark.asyncio
    async def test_issue_caps_huge_validity(self, client):
        body = await _issue(client, validityMs=10**15)
        assert body["validityMs"] == 86_400_000

    @pytest.mark.asyncio
    async def test_issue_rejects_oversized_identifiers(self, client):
        device = await client.post("/api/qr-sessions", json={"deviceId": "x" * 80})
        assert device.status_code == 400
        assert device.json() == {"ok": False, "error": "invalid_device"}

        tenant = await client.post("/api/qr-sessions", json={"deviceId": "7", "tenantId": "t" * 65})
        assert tenant.status_code == 422

    @pytest.mark.asyncio
    async def test_issue_accepts_legacy_field_names(self, client):
        response = await client.post(
            "/api/qr-sessions",
            json={"lockerId": 3, "empresaId": 12, "expiresInMs": 5000},
        )
        assert response.status_code == 200
        assert response.json()["deviceId"] == "LOCKER_003"
        assert response.json()["validityMs"] == 5000

    @pytest.mark.asyncio
    async def test_issue_url_payload_from_forwarded_headers(self, client):
        response = await client.post(
            "/api/qr-sessions",
            json={"deviceId": "7", "wantUrl": True},
            headers={"x-forwarded-proto": "https", "host": "lockers.example"},
        )
        payload = response.json()["payload"]
        assert payload.startswith("https://lockers.example/api/qr/scan?c=")

    @pytest.mark.asyncio
    async def test_issue_url_payload_prefers_public_base_url(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "public_base_url", "https://gate.example")
        body = await _issue(client, wantUrl=True)
        assert body["payload"].startswith("https://gate.example/api/qr/scan?c=")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"deviceId": ""}, {"deviceId": "   "}])
    async def test_issue_rejects_missing_device(self, client, body):
        response = await client.post("/api/qr-sessions", json=body)
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "invalid_device"}


class TestScanEndpoint:
    @pytest.mark.asyncio
    async def test_scan_by_body_then_reuse(self, client):
        code = (await _issue(client))["payload"]

        first = await client.post("/api/qr/scan", json={"code": code})
        assert first.status_code == 200
        body = first.json()
        assert body["ok"] is True
        assert body["deviceId"] == "LOCKER_007"
        assert body["action"] == "OPEN"
        assert body["commandId"]

        again = await client.post("/api/qr/scan", json={"code": code})
        assert again.status_code == 200
        assert again.json() == {"ok": False, "error": "already_used"}

    @pytest.mark.asyncio
    async def test_scan_by_query(self, client):
        code = (await _issue(client))["payload"]
        response = await client.get("/api/qr/scan", params={"c": code})
        assert response.status_code == 200
        assert response.json()["ok"] is True

    @pytest.mark.asyncio
    async def test_scan_url_payload_round_trip(self, client):
        url = (await _issue(client, wantUrl=True))["payload"]
        response = await client.get(url)
        assert response.json()["ok"] is True

    @pytest.mark.asyncio
    async def test_missing_code_is_client_error(self, client):
        assert (await client.get("/api/qr/scan")).status_code == 400
        response = await client.post("/api/qr/scan", json={})
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "missing_code"}

    @pytest.mark.asyncio
    async def test_unknown_and_expired_look_the_same(self, client):
        code = (await _issue(client, validityMs=1000))["payload"]
        await asyncio.sleep(1.1)

        expired = await client.post("/api/qr/scan", json={"code": code})
        unknown = await client.post("/api/qr/scan", json={"code": "0" * 32})

        assert expired.status_code == unknown.status_code == 200
        assert expired.json() == unknown.json() == {"ok": False, "error": "expired_or_invalid"}

    @pytest.mark.asyncio
    async def test_already_used_can_be_merged(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "scan_merge_already_used", True)
        code = (await _issue(client))["payload"]
        await client.post("/api/qr/scan", json={"code": code})
        again = await client.post("/api/qr/scan", json={"code": code})
        assert again.json() == {"ok": False, "error": "expired_or_invalid"}

    @pytest.mark.asyncio
    async def test_failed_scans_are_throttled(self, client, monkeypatch):
        monkeypatch.setattr(
            session_routes,
            "SCAN_LIMITER",
            CodeGuessLimiter(max_misses=2, window_seconds=60, lockout_seconds=30),
        )
        for _ in range(2):
            response = await client.post("/api/qr/scan", json={"code": "nope"})
            assert response.status_code == 200

        blocked = await client.post("/api/qr/scan", json={"code": "nope"})
        assert blocked.status_code == 429
        assert blocked.json()["error"] == "scan_rate_limited"
        assert int(blocked.headers["retry-after"]) >= 1

    @pytest.mark.asyncio
    async def test_stale_codes_do_not_lock_out_valid_scans(self, client, monkeypatch):
        monkeypatch.setattr(
            session_routes,
            "SCAN_LIMITER",
            CodeGuessLimiter(max_misses=2, window_seconds=60, lockout_seconds=30),
        )
        used = (await _issue(client))["payload"]
        await client.post("/api/qr/scan", json={"code": used})
        for _ in range(5):
            again = await client.post("/api/qr/scan", json={"code": used})
            assert again.json()["error"] == "already_used"

        fresh = (await _issue(client))["payload"]
        response = await client.post("/api/qr/scan", json={"code": fresh})
        assert response.status_code == 200
        assert response.json()["ok"] is True


class TestDeviceEndpoints:
    @pytest.mark.asyncio
    async def test_full_cycle(self, client):
        code = (await _issue(client, "007"))["payload"]
        command_id = (await client.post("/api/qr/scan", json={"code": code})).json()["commandId"]

        for _ in range(2):
            polled = await client.get("/api/lockers/007/next-command")
            assert polled.status_code == 200
            assert polled.json() == {
                "ok": True,
                "command": {"id": command_id, "deviceId": "LOCKER_007", "action": "OPEN"},
            }

        ack = await client.post(f"/api/commands/{command_id}/ack", json={"success": True})
        assert ack.status_code == 200
        assert ack.json() == {"ok": True, "success": True, "alreadyAcknowledged": False}

        empty = await client.get("/api/lockers/007/next-command")
        assert empty.json() == {"ok": True, "command": None}

        detail = (await client.get(f"/api/commands/{command_id}")).json()
        assert detail["status"] == "DELIVERED"
        assert detail["ackAt"] is not None
        assert detail["ackSuccess"] is True
        assert detail["originTokenId"]

    @pytest.mark.asyncio
    async def test_two_sessions_are_served_in_creation_order(self, client):
        first = (await _issue(client, "007"))["payload"]
        second = (await _issue(client, "007"))["payload"]
        first_id = (await client.post("/api/qr/scan", json={"code": first})).json()["commandId"]
        second_id = (await client.post("/api/qr/scan", json={"code": second})).json()["commandId"]

        head = (await client.get("/api/lockers/007/next-command")).json()["command"]
        assert head["id"] == first_id
        await client.post(f"/api/commands/{first_id}/ack", json={"success": True})
        head = (await client.get("/api/lockers/007/next-command")).json()["command"]
        assert head["id"] == second_id

    @pytest.mark.asyncio
    async def test_repeat_ack_reports_duplicate(self, client):
        created = await client.post("/api/lockers/7/commands", json={"action": "CLOSE"})
        assert created.status_code == 201
        command_id = created.json()["id"]

        await client.post(f"/api/commands/{command_id}/ack", json={"success": True})
        again = await client.post(f"/api/commands/{command_id}/ack", json={"success": False})
        assert again.status_code == 200
        assert again.json()["alreadyAcknowledged"] is True

    @pytest.mark.asyncio
    async def test_ack_unknown_is_not_found(self, client):
        response = await client.post("/api/commands/424242/ack", json={"success": True})
        assert response.status_code == 404
        assert response.json() == {"ok": False, "error": "not_found"}
        assert (await client.get("/api/commands/xyz")).status_code == 404

    @pytest.mark.asyncio
    async def test_blank_device_is_rejected(self, client):
        response = await client.get("/api/lockers/%20/next-command")
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_device"

    @pytest.mark.asyncio
    async def test_enqueue_rejects_unknown_action(self, client):
        response = await client.post("/api/lockers/7/commands", json={"action": "EXPLODE"})
        assert response.status_code == 422


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_slow_store_surfaces_as_unavailable(self, client, settings, monkeypatch):
        async def slow_next_command(session, device_id_raw):
            await asyncio.sleep(1)

        monkeypatch.setattr(settings, "store_timeout_seconds", 0.05)
        monkeypatch.setattr(command_service, "next_command", slow_next_command)

        response = await client.get("/api/lockers/7/next-command")
        assert response.status_code == 503
        assert response.json() == {"ok": False, "error": "store_unavailable"}

    @pytest.mark.asyncio
    async def test_store_error_surfaces_as_unavailable(self, client, monkeypatch):
        async def broken_get_command(session, command_id):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(command_service, "get_command", broken_get_command)

        response = await client.get("/api/commands/1")
        assert response.status_code == 503
        assert response.json()["error"] == "store_unavailable"


@pytest.mark.asyncio
async def test_health_and_events(client):
    assert (await client.get("/health")).json()["status"] == "ok"

    await _issue(client)
    events = (await client.get("/events", params={"category": "sessions"})).json()
    assert [event["name"] for event in events] == ["session.issue"]


@pytest.mark.asyncio
async def test_events_filtered_by_locker(client):
    code = (await _issue(client, "7"))["payload"]
    await _issue(client, "8")
    await client.post("/api/qr/scan", json={"code": code})

    events = (await client.get("/events", params={"device_id": "locker_7"})).json()
    assert [event["name"] for event in events] == ["session.consume", "session.issue"]
    assert {event["device_id"] for event in events} == {"LOCKER_007"}
    assert (await client.get("/events", params={"device_id": " "})).status_code == 400
