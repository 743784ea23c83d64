from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import PERSIAN_FEMALE, FakeBackend, FakeRecognitionEngine, FakeSynthesisEngine, final
from crm_voice.config import AppSettings
from crm_voice.errors import SessionBusyError
from crm_voice.main import app
from crm_voice.runtime import VoiceRuntime, build_runtime


@pytest.fixture
def recognition() -> FakeRecognitionEngine:
    return FakeRecognitionEngine([[final("گزارش کار احمد")]])


@pytest.fixture
def runtime(recognition: FakeRecognitionEngine):
    runtime = build_runtime(
        AppSettings(),
        recognition_engine=recognition,
        synthesis_engine=FakeSynthesisEngine(voices=[PERSIAN_FEMALE]),
        backend=FakeBackend(),
    )
    app.state.runtime = runtime
    yield runtime
    del app.state.runtime


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_voice_interaction_returns_result(runtime: VoiceRuntime, client: TestClient) -> None:
    response = client.post("/voice/interact")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["transcript"] == "گزارش کار احمد"
    assert body["response"]["type"] == "success"
    assert body["response"]["data"]["employee_name"] == "احمد"


def test_text_interaction(runtime: VoiceRuntime, client: TestClient) -> None:
    response = client.post("/voice/text", json={"text": "امروز چه خبر؟"})
    assert response.status_code == 200
    assert response.json()["response"] == {"text": "سلام! خوبم.", "type": "success"}


def test_busy_session_maps_to_conflict(runtime: VoiceRuntime, client: TestClient, monkeypatch) -> None:
    async def busy():
        raise SessionBusyError()

    monkeypatch.setattr(runtime.orchestrator, "handle_voice_interaction", busy)
    response = client.post("/voice/interact")
    assert response.status_code == 409
    assert response.json()["detail"] == SessionBusyError().message


def test_status_and_self_test(runtime: VoiceRuntime, client: TestClient) -> None:
    status = client.get("/voice/status").json()
    assert status["state"] == "IDLE"
    assert status["is_processing"] is False
    assert status["ui_clients"] == 0

    assert client.get("/voice/self-test").json()["overall"] is True


def test_stop_endpoint(runtime: VoiceRuntime, client: TestClient) -> None:
    response = client.post("/voice/stop")
    assert response.status_code == 200
    assert response.json() == {"status": "stopped"}


def test_manual_endpoints_without_pending_request(runtime: VoiceRuntime, client: TestClient) -> None:
    assert client.get("/voice/manual").json() == {"waiting": False, "prompt": None}
    assert client.post("/voice/manual", json={"text": "گزارش کار احمد"}).status_code == 409
    assert client.post("/voice/manual/cancel").status_code == 409


def test_missing_runtime_is_unavailable(client: TestClient) -> None:
    assert client.get("/voice/status").status_code == 503


def test_voice_check_endpoint(runtime: VoiceRuntime, client: TestClient) -> None:
    response = client.post("/voice/test-voice")
    assert response.status_code == 200
    assert response.json() == {"success": True}


def test_voice_reload_endpoint(runtime: VoiceRuntime, client: TestClient) -> None:
    assert client.post("/voice/voices/reload").status_code == 409

    reloads: list[int] = []
    runtime.voice_reloader = lambda: reloads.append(1)
    response = client.post("/voice/voices/reload")

    assert response.status_code == 200
    assert response.json()["best_voice"] == "Dilara (fa-IR)"
    assert reloads == [1]
