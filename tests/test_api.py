import pytest
from fastapi.testclient import TestClient

from listenkit.main import create_app, wire

from conftest import Harness, make_settings


@pytest.fixture
def client():
    settings = make_settings()

    def services(s):
        return wire(Harness(settings=s).orchestrator, s)

    with TestClient(create_app(settings, services_factory=services)) as c:
        yield c


def command(client, name, payload=None):
    return client.post(f"/api/commands/{name}", json=payload)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_command_round_trip(client):
    assert command(client, "get-continuous-listening-state").json() == {"isListening": False}
    assert command(client, "start-continuous-listening").json() is True
    assert command(client, "get-continuous-listening-state").json() == {"isListening": True}
    assert command(client, "pause-listening").json() == {"success": True}
    assert command(client, "send-conversation-to-llm", {"includeScreenshot": False}).json() == {"success": True}
    assert command(client, "get-conversation-history").json() == []
    assert command(client, "stop-continuous-listening").json() == {"success": True}
    assert command(client, "stop-continuous-listening").json() == {"success": True}
    assert command(client, "get-continuous-listening-state").json() == {"isListening": False}


def test_unknown_command_is_404(client):
    assert command(client, "self-destruct").status_code == 404


def test_invalid_payload_is_422(client):
    assert command(client, "push-microphone-audio", {"wrong": 1}).status_code == 422


def test_websocket_commands(client):
    with client.websocket_connect("/ws/events") as ws:
        ws.send_json({"type": "command", "command": "get-continuous-listening-state"})
        assert ws.receive_json() == {
            "type": "command-result",
            "command": "get-continuous-listening-state",
            "result": {"isListening": False},
        }
        ws.send_json({"type": "command", "command": "nope"})
        assert ws.receive_json()["error"] == "unknown_command"


def test_websocket_streams_events(client):
    with client.websocket_connect("/ws/events") as ws:
        ws.send_json({"type": "command", "command": "start-continuous-listening"})
        seen = [ws.receive_json(), ws.receive_json()]
        by_type = {m["type"]: m for m in seen}
        assert by_type["continuous-listen-state"]["payload"]["isListening"] is True
        assert by_type["command-result"]["result"] is True
        ws.send_json({"type": "mic_audio", "data": "AQA="})
        ws.send_json({"type": "command", "command": "stop-continuous-listening"})
        seen = [ws.receive_json(), ws.receive_json()]
        assert {m["type"] for m in seen} == {"continuous-listen-state", "command-result"}
