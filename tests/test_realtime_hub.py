"""
End-to-End Tests for the Realtime Hub
-------------------------------------
Tests verify:
- Full sessions over LocalTransport (connect → events → disconnect)
- The admin/user location scenario
- Malformed frames are reported without dropping the session
- Server-side publish and shutdown
- The FastAPI app: health, WebSocket channel, privileged REST endpoints

Run with: pytest tests/test_realtime_hub.py -v
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

import pytest

# Add src to path
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


SECRET = "hub-test-secret"


# ============================================================
# Test Fixtures
# ============================================================

def make_config(**kwargs):
    from tourist_realtime.config import RealtimeConfig

    return RealtimeConfig(jwt_secret=SECRET, **kwargs)


def make_token(subject_id, role=None, **kwargs):
    from tourist_realtime.auth import issue_token

    return issue_token(SECRET, subject_id, role=role, **kwargs)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class Harness:
    """Running hub plus helpers to attach LocalTransport clients."""

    def __init__(self, **config_overrides):
        from tourist_realtime.server import RealtimeHub

        self.hub = RealtimeHub(make_config(**config_overrides))
        self.tasks = []

    async def __aenter__(self):
        await self.hub.start()
        return self

    async def __aexit__(self, *exc):
        await self.hub.stop()
        await asyncio.gather(*self.tasks, return_exceptions=True)

    async def connect(self, subject_id, role="user", token=None, transport=None):
        """Open a session and wait until it is joined."""
        from tourist_realtime.transport import LocalTransport

        transport = transport or LocalTransport(f"{role}-{subject_id}")
        token = token if token is not None else make_token(subject_id, role)
        task = asyncio.create_task(self.hub.handle_connection(token, transport))
        self.tasks.append(task)
        await wait_until(lambda: transport.sent or transport.closed)
        return transport, task


# ============================================================
# Hub Tests (LocalTransport)
# ============================================================

class TestRealtimeHub:
    """Tests for the hub's entry points."""

    def test_admin_receives_user_location(self):
        """Test the admin/user scenario: A sees B's location, B does not."""
        async def scenario():
            async with Harness() as h:
                admin_tx, _ = await h.connect("1", "admin")
                user_tx, _ = await h.connect("42", "user")

                user_tx.push("location_update", {"lat": 27.17, "lon": 78.04})
                await wait_until(lambda: admin_tx.received("location_update"))
                await h.hub.drain()

                assert admin_tx.received("location_update") == [{"lat": 27.17, "lon": 78.04}]
                assert [f["event"] for f in user_tx.sent] == ["session_ready"]

                user_room = h.hub.registry.members_of("user_42")
                assert [c.subject_id for c in user_room] == ["42"]

        asyncio.run(scenario())

    def test_events_keep_submission_order(self):
        """Test a connection's events reach subscribers in the order sent."""
        async def scenario():
            async with Harness() as h:
                admin_tx, _ = await h.connect("1", "admin")
                device_tx, _ = await h.connect("dev-9", "user")

                for i in range(20):
                    device_tx.push("device_update", {"seq": i})
                await wait_until(lambda: len(admin_tx.received("device_update")) == 20)

                assert [d["seq"] for d in admin_tx.received("device_update")] == list(range(20))

        asyncio.run(scenario())

    def test_emergency_alert_end_to_end(self):
        """Test an alert reaches admins and connected contacts."""
        async def scenario():
            async with Harness() as h:
                gov_tx, _ = await h.connect("g1", "government")
                tourist_tx, _ = await h.connect("42", "user")
                family_tx, _ = await h.connect("7", "user")

                alert = {"type": "panic", "contacts": ["7", "404"]}
                tourist_tx.push("emergency_alert", alert)
                await wait_until(lambda: family_tx.received("emergency_notification"))
                await h.hub.drain()

                assert gov_tx.received("emergency_alert") == [alert]
                assert family_tx.received("emergency_notification") == [alert]
                assert tourist_tx.received("emergency_alert") == []

        asyncio.run(scenario())

    def test_stalled_admin_does_not_delay_live_admin(self):
        """Test a stuck admin socket costs the other admins nothing."""
        from tourist_realtime.transport import LocalTransport

        class StalledTransport(LocalTransport):
            async def send(self, message):
                if message.get("event") == "session_ready":
                    await super().send(message)
                    return
                await asyncio.Event().wait()

        async def scenario():
            async with Harness(send_timeout_sec=0.5) as h:
                await h.connect("1", "admin", transport=StalledTransport("stalled"))
                live_tx, _ = await h.connect("2", "admin")
                user_tx, _ = await h.connect("3", "user")

                started = time.monotonic()
                for seq in range(4):
                    user_tx.push("device_update", {"seq": seq})

                # One send timeout per event would take 2s
                await wait_until(lambda: len(live_tx.received("device_update")) == 4, timeout=0.4)

                assert time.monotonic() - started < 0.5
                assert [d["seq"] for d in live_tx.received("device_update")] == [0, 1, 2, 3]

        asyncio.run(scenario())

    def test_rejected_connection(self):
        """Test a bad credential ends handle_connection without joining."""
        from tourist_realtime.transport import AUTH_ERROR_CLOSE_CODE

        async def scenario():
            async with Harness() as h:
                transport, task = await h.connect("1", token="garbage")
                await task

                assert transport.close_code == AUTH_ERROR_CLOSE_CODE
                assert h.hub.sessions.count == 0
                assert h.hub.registry.room_names() == []

        asyncio.run(scenario())

    def test_disconnect_cleans_up(self):
        """Test a peer disconnect removes the session from every room."""
        async def scenario():
            async with Harness() as h:
                admin_tx, task = await h.connect("1", "admin")
                assert h.hub.sessions.count == 1

                admin_tx.disconnect()
                await task

                assert h.hub.sessions.count == 0
                assert h.hub.registry.room_names() == []

        asyncio.run(scenario())

    def test_malformed_frames_keep_session(self):
        """Test bad frames get an error reply and the session survives."""
        async def scenario():
            async with Harness() as h:
                admin_tx, _ = await h.connect("1", "admin")
                user_tx, _ = await h.connect("2", "user")

                user_tx.push_raw("not a frame")
                user_tx.push_raw({"data": {"no": "event"}})
                user_tx.push("chat_message", {"ignored": True})
                user_tx.push("device_update", {"ok": True})

                await wait_until(lambda: admin_tx.received("device_update"))

                errors = user_tx.received("error")
                assert len(errors) == 2
                assert all("message" in e for e in errors)
                assert h.hub.get_stats()["invalid_frames"] == 2

        asyncio.run(scenario())

    def test_publish_reaches_everyone_in_room(self):
        """Test server-originated events have no sender to skip."""
        from tourist_realtime.protocol import Event, EventType

        async def scenario():
            async with Harness() as h:
                a_tx, _ = await h.connect("1", "admin")
                b_tx, _ = await h.connect("2", "admin")

                await h.hub.publish(Event(EventType.DEVICE_UPDATE, {"from": "server"}))
                await h.hub.drain()

                assert a_tx.received("device_update") == [{"from": "server"}]
                assert b_tx.received("device_update") == [{"from": "server"}]

        asyncio.run(scenario())

    def test_stop_closes_sessions(self):
        """Test shutdown closes live sessions with 1001."""
        from tourist_realtime.server import RealtimeHub
        from tourist_realtime.transport import GOING_AWAY, LocalTransport

        async def scenario():
            hub = RealtimeHub(make_config())
            await hub.start()
            transport = LocalTransport("admin")
            task = asyncio.create_task(hub.handle_connection(make_token("1", "admin"), transport))
            await wait_until(lambda: transport.sent)

            await hub.stop()
            await asyncio.wait_for(task, timeout=1.0)

            assert transport.close_code == GOING_AWAY
            assert hub.registry.room_names() == []
            assert not hub.running

        asyncio.run(scenario())

    def test_submit_requires_start(self):
        """Test submitting before start() is an error."""
        from tourist_realtime.protocol import Event, EventType
        from tourist_realtime.server import RealtimeHub

        hub = RealtimeHub(make_config())

        with pytest.raises(RuntimeError, match="not started"):
            asyncio.run(hub.publish(Event(EventType.DEVICE_UPDATE, {})))


# ============================================================
# API Tests (FastAPI TestClient)
# ============================================================

@pytest.fixture
def client():
    from tourist_realtime.api import create_app

    app = create_app(make_config(environment="test"))
    with TestClient(app) as test_client:
        yield test_client


def _auth(subject_id, role):
    return {"Authorization": f"Bearer {make_token(subject_id, role)}"}


class TestRealtimeAPI:
    """Tests for the HTTP and WebSocket surface."""

    def test_root_and_health(self, client):
        """Test liveness endpoints."""
        root = client.get("/")
        assert root.status_code == 200
        assert root.json()["success"] is True

        health = client.get("/health")
        assert health.status_code == 200
        body = health.json()
        assert body["status"] == "OK"
        assert body["environment"] == "test"
        assert body["hub_running"] is True

    def test_websocket_session_ready(self, client):
        """Test a valid token gets a session_ready frame with its rooms."""
        with client.websocket_connect(f"/ws?token={make_token(5, 'admin')}") as ws:
            frame = ws.receive_json()

        assert frame["event"] == "session_ready"
        assert frame["data"] == {"subject_id": "5", "role": "admin", "rooms": ["admin_room", "user_5"]}

    def test_websocket_bearer_header(self, client):
        """Test the credential may come from the Authorization header."""
        with client.websocket_connect("/ws", headers=_auth(6, "user")) as ws:
            frame = ws.receive_json()

        assert frame["data"]["rooms"] == ["user_6"]

    @pytest.mark.parametrize("path", ["/ws", "/ws?token=garbage"])
    def test_websocket_rejects_bad_credentials(self, client, path):
        """Test missing or invalid tokens get an authentication-error close."""
        with client.websocket_connect(path) as ws:
            with pytest.raises(WebSocketDisconnect) as excinfo:
                ws.receive_json()

        assert excinfo.value.code == 4401
        assert excinfo.value.reason == "Authentication error"

    def test_websocket_location_scenario(self, client):
        """Test a user's location_update is pushed to an admin socket."""
        with client.websocket_connect(f"/ws?token={make_token(1, 'admin')}") as admin_ws:
            assert admin_ws.receive_json()["event"] == "session_ready"

            with client.websocket_connect(f"/ws?token={make_token(42, 'user')}") as user_ws:
                assert user_ws.receive_json()["event"] == "session_ready"

                user_ws.send_json({"event": "location_update", "data": {"lat": 1.5, "lon": 2.5}})

                frame = admin_ws.receive_json()
                assert frame == {"event": "location_update", "data": {"lat": 1.5, "lon": 2.5}}

    def test_websocket_emergency_contacts(self, client):
        """Test contacts receive emergency_notification over the socket."""
        with client.websocket_connect(f"/ws?token={make_token(7, 'user')}") as family_ws:
            family_ws.receive_json()

            with client.websocket_connect(f"/ws?token={make_token(42, 'user')}") as tourist_ws:
                tourist_ws.receive_json()
                tourist_ws.send_json({"event": "emergency_alert", "data": {"contacts": [7]}})

                frame = family_ws.receive_json()
                assert frame == {"event": "emergency_notification", "data": {"contacts": [7]}}

    def test_websocket_malformed_text(self, client):
        """Test invalid JSON gets an error frame and the socket stays open."""
        with client.websocket_connect(f"/ws?token={make_token(3, 'user')}") as ws:
            ws.receive_json()
            ws.send_text("{not json")

            frame = ws.receive_json()
            assert frame["event"] == "error"

            ws.send_text("[]")
            assert ws.receive_json()["event"] == "error"

    def test_stats_requires_privileged_token(self, client):
        """Test stats: 401 without token, 403 for users, 200 for admins."""
        assert client.get("/api/realtime/stats").status_code == 401
        assert client.get("/api/realtime/stats", headers=_auth(1, "user")).status_code == 403

        response = client.get("/api/realtime/stats", headers=_auth(1, "government"))
        assert response.status_code == 200
        body = response.json()
        assert body["running"] is True
        assert set(body["routing"]) == {"routed_events", "dropped_events", "deliveries", "overflowed_deliveries"}
        assert {"sent_frames", "failed_sends"} <= set(body["sessions"])

    def test_publish(self, client):
        """Test an admin can inject an event that reaches admin sockets."""
        with client.websocket_connect(f"/ws?token={make_token(1, 'admin')}") as admin_ws:
            admin_ws.receive_json()

            response = client.post(
                "/api/realtime/publish",
                json={"event": "device_update", "data": {"deviceId": "D-1", "battery": 12}},
                headers=_auth(99, "admin"),
            )
            assert response.status_code == 202
            assert response.json()["event"] == "device_update"

            frame = admin_ws.receive_json()
            assert frame == {"event": "device_update", "data": {"deviceId": "D-1", "battery": 12}}

    def test_publish_validation(self, client):
        """Test unknown event names and non-admin callers are refused."""
        bad = client.post(
            "/api/realtime/publish",
            json={"event": "chat_message", "data": {}},
            headers=_auth(1, "admin"),
        )
        assert bad.status_code == 422

        forbidden = client.post(
            "/api/realtime/publish",
            json={"event": "device_update", "data": {}},
            headers=_auth(1, "user"),
        )
        assert forbidden.status_code == 403

    def test_unknown_route(self, client):
        """Test unknown paths get a JSON 404 in the same shape as GET /."""
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Route not found", "path": "/api/nope"}

        # Other HTTP errors keep their usual shape
        unauthorized = client.get("/api/realtime/stats")
        assert unauthorized.status_code == 401
        assert "detail" in unauthorized.json()
