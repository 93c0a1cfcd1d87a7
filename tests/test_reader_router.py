"""Tests for the reader control API."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from narrator.config import get_settings
from narrator.errors import DeliveryError
from narrator.orchestrator import ReaderOrchestrator
from narrator.routers import reader as reader_router
from narrator.services.channel_client import ConnectionState
from narrator.services.delivery import DeliveryBackend
from narrator.services.reader_settings import ReaderSettingsService


def make_backend() -> MagicMock:
    backend = MagicMock(spec=DeliveryBackend)
    backend.ensure_ready.return_value = False
    backend.is_speaking.return_value = False
    return backend


def make_app(settings_path, backend=None):
    channel = MagicMock()
    channel.state = ConnectionState.CONNECTED
    channel.connected = True
    channel.connect = AsyncMock()
    channel.disconnect = AsyncMock()

    service = ReaderSettingsService(settings_path)
    orchestrator = ReaderOrchestrator(
        service,
        backend or make_backend(),
        channel=channel,
        settle_delay=0,
        recovery_delay=0,
    )

    app = FastAPI()
    app.state.reader_settings_service = service
    app.state.reader_orchestrator = orchestrator
    app.include_router(reader_router.router)
    return app, orchestrator, channel


def test_status(settings_path):
    app, *_ = make_app(settings_path)

    response = TestClient(app).get("/api/reader/status")

    assert response.status_code == 200
    assert response.json() == {"connected": True, "speaking": False}


def test_connect_stores_port(settings_path):
    app, _, channel = make_app(settings_path)

    response = TestClient(app).post("/api/reader/connect", json={"port": 9050})

    assert response.json() == {"success": True, "port": 9050}
    channel.connect.assert_awaited_once_with(9050)
    assert ReaderSettingsService(settings_path).get_port() == 9050


def test_connect_with_invalid_port_uses_default(settings_path):
    app, _, channel = make_app(settings_path)

    response = TestClient(app).post("/api/reader/connect", json={"port": "banana"})

    assert response.json()["port"] == 7123
    channel.connect.assert_awaited_once_with(7123)


def test_disconnect(settings_path):
    app, _, channel = make_app(settings_path)

    response = TestClient(app).post("/api/reader/disconnect")

    assert response.json() == {"success": True, "error": None}
    channel.disconnect.assert_awaited_once()


def test_play_without_text_reports_error(settings_path):
    backend = make_backend()
    app, *_ = make_app(settings_path, backend)

    response = TestClient(app).post("/api/reader/play")

    assert response.json() == {"success": False, "error": "No text available"}
    backend.start.assert_not_awaited()


def test_play_uses_selected_text(settings_path):
    backend = make_backend()
    app, *_ = make_app(settings_path, backend)
    client = TestClient(app)

    client.post("/api/reader/selected-text", json={"text": "  chosen words  "})
    response = client.post("/api/reader/play", json={})

    assert response.json() == {"success": True}
    assert backend.start.await_args.args[0] == "chosen words"


def test_play_with_explicit_text(settings_path):
    backend = make_backend()
    app, orchestrator, _ = make_app(settings_path, backend)

    response = TestClient(app).post("/api/reader/play", json={"text": "explicit"})

    assert response.json() == {"success": True}
    assert orchestrator.selected_text == "explicit"


def test_play_reports_delivery_failure(settings_path):
    backend = make_backend()
    backend.start.side_effect = DeliveryError("playTTS", "speech host exited")
    app, *_ = make_app(settings_path, backend)

    response = TestClient(app).post("/api/reader/play", json={"text": "hi"})

    assert response.json() == {"success": False, "error": "Delivery failed"}
    assert backend.start.await_count == 2


def test_stop(settings_path):
    backend = make_backend()
    app, *_ = make_app(settings_path, backend)

    response = TestClient(app).post("/api/reader/stop")

    assert response.json()["success"] is True
    backend.stop.assert_awaited_once()


def test_blank_selection_is_ignored(settings_path):
    app, *_ = make_app(settings_path)
    client = TestClient(app)

    client.post("/api/reader/selected-text", json={"text": "first"})
    response = client.post("/api/reader/selected-text", json={"text": "   "})

    assert response.json()["success"] is False
    assert client.get("/api/reader/selected-text").json() == {"text": "first"}


def test_settings_round_trip(settings_path):
    app, *_ = make_app(settings_path)
    client = TestClient(app)

    updated = client.put("/api/reader/settings", json={"rate": 1.4, "volume": 0})
    assert updated.status_code == 200
    assert updated.json()["rate"] == 1.4
    assert updated.json()["volume"] == 0

    assert client.get("/api/reader/settings").json()["rate"] == 1.4

    reset = client.post("/api/reader/settings/reset")
    assert reset.json()["rate"] == 1.0
    assert reset.json()["port"] == 7123


def test_settings_update_with_invalid_values_uses_defaults(settings_path):
    app, *_ = make_app(settings_path)
    client = TestClient(app)
    client.put("/api/reader/settings", json={"port": 9000, "pitch": 1.5})

    response = client.put(
        "/api/reader/settings", json={"port": "abc", "pitch": "high", "rate": 0.5}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["port"] == 7123
    assert body["pitch"] == 1.0
    assert body["rate"] == 0.5
    assert ReaderSettingsService(settings_path).get_port() == 7123


def test_events_stream_pushes_status_and_selection(settings_path):
    app, *_ = make_app(settings_path)

    with TestClient(app) as client:
        with client.websocket_connect("/api/reader/events") as ws:
            assert ws.receive_json() == {
                "action": "connectionStatusChanged",
                "status": "connected",
            }

            client.post("/api/reader/selected-text", json={"text": " picked "})

            assert ws.receive_json() == {"action": "textSelected", "text": "picked"}


@pytest.fixture
def app_env(monkeypatch, settings_path):
    monkeypatch.setenv("READER_SETTINGS_PATH", str(settings_path))
    monkeypatch.setenv("NARRATOR_BACKEND", "native")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_create_app_health(app_env, settings_path):
    from narrator.app import create_app

    app = create_app()

    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "connection": "disconnected",
        "backend": {"name": "native", "running": False, "pid": None},
    }
    assert app.state.reader_settings_service.path == settings_path.resolve()
