"""
Integration Tests for the WebSocket gateway

Runs the FastAPI app in-process with the Starlette TestClient, the offline
heuristic AI and the dry-run notifier.
"""

import time

import pytest
from fastapi.testclient import TestClient

from safecall.api.ws_gateway import ConnectionHub, create_app
from safecall.config.settings import Config, EscalationConfig, GatewayConfig, SessionConfig
from safecall.services.dry_run import DryRunNotificationService, NullVisionService
from safecall.services.factory import ServiceBundle, build_orchestrator
from safecall.services.heuristic_ai import HeuristicAIService


def wait_for(predicate, attempts=100, interval=0.01):
    for _ in range(attempts):
        if predicate():
            return True
        time.sleep(interval)
    return False


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def notifier():
    return DryRunNotificationService()


@pytest.fixture
def cfg(tmp_path):
    return Config(
        session=SessionConfig(greeting_delay_seconds=0.0),
        escalation=EscalationConfig(inter_contact_delay_seconds=0.0, retry_wait_seconds=0.0),
        gateway=GatewayConfig(enable_cors=False),
        audit_log_dir=str(tmp_path),
    )


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def orchestrator(cfg, hub, notifier):
    services = ServiceBundle(ai=HeuristicAIService(), vision=NullVisionService(), notifier=notifier)
    return build_orchestrator(hub, cfg, services=services)


@pytest.fixture
def client(cfg, hub, orchestrator):
    app = create_app(orchestrator=orchestrator, hub=hub, cfg=cfg)
    with TestClient(app) as test_client:
        yield test_client


def join(ws, session_id="call-1", user_id="user-1"):
    ws.send_json({"event": "join-call", "data": {"sessionId": session_id, "userId": user_id}})
    joined = ws.receive_json()
    greeting = ws.receive_json()
    return joined, greeting


# ============================================================================
# Wiring
# ============================================================================

class TestWiring:
    def test_injected_hub_and_orchestrator_are_used(self, client, hub, orchestrator):
        assert client.app.state.hub is hub
        assert client.app.state.orchestrator is orchestrator

        with client.websocket_connect("/ws"):
            assert wait_for(lambda: len(hub) == 1)
        assert wait_for(lambda: len(hub) == 0)


# ============================================================================
# HTTP endpoints
# ============================================================================

class TestHttp:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["activeSessions"] == 0

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "safecall_active_sessions" in response.text

    def test_resolve_unknown_incident(self, client):
        response = client.post("/incidents/INC-MISSING/resolve", json={"notes": "x"})
        assert response.status_code == 404


# ============================================================================
# Session socket
# ============================================================================

class TestSessionSocket:
    def test_join_and_chat(self, client):
        with client.websocket_connect("/ws") as ws:
            joined, greeting = join(ws)
            assert joined["event"] == "call-joined"
            assert joined["data"]["sessionId"] == "call-1"
            assert greeting["event"] == "ai-message"
            assert greeting["data"]["type"] == "greeting"

            ws.send_json({"event": "chat-message", "data": {"sessionId": "call-1", "message": "I'm feeling sad today"}})
            reply = ws.receive_json()

            assert reply["event"] == "ai-message"
            assert reply["data"]["threatLevel"] == "low"
            assert client.get("/health").json()["activeSessions"] == 1

    def test_end_call(self, client):
        with client.websocket_connect("/ws") as ws:
            join(ws)
            ws.send_json({"event": "end-call", "data": {"sessionId": "call-1"}})
            ended = ws.receive_json()

            assert ended["event"] == "call-ended"
            assert ended["data"]["messageCount"] == 0

    def test_unknown_session(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "chat-message", "data": {"sessionId": "ghost", "message": "hello"}})
            error = ws.receive_json()

            assert error == {"event": "error", "data": {"message": "Call session not found", "sessionId": "ghost"}}

    def test_malformed_frames(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["data"]["message"] == "Frames must be JSON"

            ws.send_json({"data": {}})
            assert ws.receive_json()["data"]["message"] == "Missing event name"

    def test_disconnect_cleans_up(self, client):
        with client.websocket_connect("/ws") as ws:
            join(ws)

        assert wait_for(lambda: client.get("/health").json()["activeSessions"] == 0)


# ============================================================================
# Escalation over the wire
# ============================================================================

class TestEscalation:
    def test_observer_receives_escalation(self, client, notifier):
        with client.websocket_connect("/ws/observe") as observer:
            with client.websocket_connect("/ws") as ws:
                join(ws)
                ws.send_json({
                    "event": "chat-message",
                    "data": {"sessionId": "call-1", "message": "Help me, someone broke in"},
                })

                reply = ws.receive_json()
                alert = ws.receive_json()
                assert reply["event"] == "ai-message"
                assert alert["event"] == "emergency-alert"
                assert alert["data"]["threatLevel"] == "critical"

                escalated = observer.receive_json()
                assert escalated["event"] == "emergency-escalated"
                assert escalated["data"]["sessionId"] == "call-1"

                assert wait_for(lambda: len(client.get("/sessions/call-1/incidents").json()) == 1)

        incident = client.get("/sessions/call-1/incidents").json()[0]
        assert incident["threat_level"] == "critical"
        assert [c["name"] for c in incident["contacted_authorities"]] == [
            "General Emergency", "Emergency Medical", "Crisis Intervention",
        ]
        assert len(notifier.sent) == 6

        resolved = client.post(f"/incidents/{incident['id']}/resolve", json={"notes": "responders on scene"})
        assert resolved.status_code == 200
        assert resolved.json()["resolved"] is True
        assert resolved.json()["notes"] == "responders on scene"

    def test_shutdown_completes_escalation(self, cfg, hub, orchestrator):
        app = create_app(orchestrator=orchestrator, hub=hub, cfg=cfg)
        with TestClient(app) as test_client:
            with test_client.websocket_connect("/ws") as ws:
                join(ws)
                ws.send_json({
                    "event": "chat-message",
                    "data": {"sessionId": "call-1", "message": "I don't want to live anymore"},
                })
                assert ws.receive_json()["event"] == "ai-message"
                assert ws.receive_json()["event"] == "emergency-alert"

        incidents = orchestrator.incidents_for("call-1")
        assert len(incidents) == 1
        assert len(incidents[0].contacted_authorities) == 3
