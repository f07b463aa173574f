import pytest
from fastapi.testclient import TestClient

from forge.agent.orchestrator import AnalysisOrchestrator
from forge.api import analyses, ws
from forge.main import app
from tests.conftest import DOCUMENT
from tests.fakes import FakeClaudeService, SleepRecorder, feedback_json, network_error, scripted, text_reply

DIRECT = {"mode": "direct", "api_key": "sk-test-key"}
NO_TOOLS = {"web_search": False, "deep_research": False, "grammar": False}

HANDLER = scripted({
    "specialist_": text_reply(feedback_json("Every company that adopted it")),
    "aggregator": text_reply(feedback_json("Every company that adopted it")),
    "critic": text_reply(feedback_json("Every company that adopted it")),
})


def fake_orchestrator_factory(handler):
    def _factory(connection=None, model=None):
        return AnalysisOrchestrator(service=FakeClaudeService(handler), model=model, sleep=SleepRecorder())

    return _factory


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "Forge"}


def test_config_check_exposes_no_secrets(client, monkeypatch):
    monkeypatch.setattr(analyses.settings, "anthropic_api_key", "sk-secret-value")
    body = client.get("/api/health/config").json()
    assert body["api_key_set"] is True
    assert "sk-secret-value" not in str(body)


def test_submit_rejects_short_text(client):
    response = client.post("/api/analyses/submit", json={"text": "too short", "connection": DIRECT})
    assert response.status_code == 422


def test_submit_rejects_unusable_connection(client):
    response = client.post(
        "/api/analyses/submit",
        json={"text": DOCUMENT, "connection": {"mode": "direct", "api_key": "REPLACE_WITH_YOUR_KEY"}},
    )
    assert response.status_code == 400
    assert "not configured" in response.json()["detail"]


def test_submit_then_poll(client, monkeypatch):
    monkeypatch.setattr(analyses, "AnalysisOrchestrator", fake_orchestrator_factory(HANDLER))

    response = client.post(
        "/api/analyses/submit", json={"text": DOCUMENT, "options": NO_TOOLS, "connection": DIRECT}
    )
    assert response.status_code == 200
    analysis_id = response.json()["analysis_id"]
    assert response.json()["status"] == "running"

    state = client.get(f"/api/analyses/{analysis_id}")
    assert state.status_code == 200
    assert state.json()["analysis_id"] == analysis_id
    assert analysis_id in client.get("/api/analyses/").json()


def test_unknown_analysis_is_404(client):
    assert client.get("/api/analyses/nope").status_code == 404


def test_websocket_streams_run(client, monkeypatch):
    monkeypatch.setattr(ws, "AnalysisOrchestrator", fake_orchestrator_factory(HANDLER))

    with client.websocket_connect("/ws/analyze") as websocket:
        websocket.send_json({"text": DOCUMENT, "options": NO_TOOLS, "connection": DIRECT})
        messages = []
        while True:
            message = websocket.receive_json()
            messages.append(message)
            if message["type"] in ("complete", "error"):
                break

    types = [m["type"] for m in messages]
    assert types[0] == "ack"
    assert types[-2:] == ["result", "complete"]
    assert types.count("agent_status") == 18
    assert [m["phase"] for m in messages if m["type"] == "phase"] == ["phase1", "phase2", "phase3"]
    result = messages[-2]["result"]
    assert [i["id"] for i in result["feedback"]] == [1]
    assert result["positions"] == {"1": DOCUMENT.index("Every company")}
    assert messages[-1]["analysis_id"] == messages[0]["analysis_id"]


def test_websocket_reports_total_failure(client, monkeypatch):
    monkeypatch.setattr(ws, "AnalysisOrchestrator", fake_orchestrator_factory(scripted({}, default=network_error())))

    with client.websocket_connect("/ws/analyze") as websocket:
        websocket.send_json({"text": DOCUMENT, "options": NO_TOOLS, "connection": DIRECT})
        message = websocket.receive_json()
        while message["type"] != "error":
            message = websocket.receive_json()

    assert message["message"].startswith("All specialist agents failed.")


def test_websocket_rejects_invalid_json(client):
    with client.websocket_connect("/ws/analyze") as websocket:
        websocket.send_text("{not json")
        assert websocket.receive_json() == {"type": "error", "message": "Invalid JSON received"}


def test_websocket_rejects_unusable_connection(client):
    with client.websocket_connect("/ws/analyze") as websocket:
        websocket.send_json({"text": DOCUMENT, "connection": {"mode": "proxied", "proxy_url": ""}})
        message = websocket.receive_json()
    assert message["type"] == "error"
    assert "not configured" in message["message"]


METADATA_PROXY = {"mode": "proxied", "proxy_url": "http://169.254.169.254/latest/meta-data"}


def test_submit_rejects_unlisted_proxy(client, monkeypatch):
    monkeypatch.setattr(analyses, "AnalysisOrchestrator", fake_orchestrator_factory(HANDLER))

    response = client.post(
        "/api/analyses/submit", json={"text": DOCUMENT, "options": NO_TOOLS, "connection": METADATA_PROXY}
    )

    assert response.status_code == 400
    assert "not allowed" in response.json()["detail"]


def test_websocket_rejects_unlisted_proxy(client, monkeypatch):
    monkeypatch.setattr(ws, "AnalysisOrchestrator", fake_orchestrator_factory(HANDLER))

    with client.websocket_connect("/ws/analyze") as websocket:
        websocket.send_json({"text": DOCUMENT, "options": NO_TOOLS, "connection": METADATA_PROXY})
        message = websocket.receive_json()

    assert message == {"type": "error", "message": "Proxy URL is not allowed on this server."}


def test_submit_accepts_listed_proxy(client, monkeypatch):
    monkeypatch.setattr(analyses, "AnalysisOrchestrator", fake_orchestrator_factory(HANDLER))
    monkeypatch.setattr(analyses.settings, "allowed_proxy_urls", ["https://proxy.example.com/"])

    response = client.post(
        "/api/analyses/submit",
        json={
            "text": DOCUMENT,
            "options": NO_TOOLS,
            "connection": {"mode": "proxied", "proxy_url": "https://proxy.example.com"},
        },
    )

    assert response.status_code == 200
    assert response.json()["status"] == "running"
