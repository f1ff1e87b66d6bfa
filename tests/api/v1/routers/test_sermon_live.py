"""Tests for the sermon live endpoints, wired to BroadcastService over the in-memory store."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from smc_live import app_config
from smc_live.api.v1.routers.sermon_live import get_broadcast_service
from smc_live.domain.live.broadcast.broadcast_domain import BroadcastService
from smc_live.domain.live.broadcast.stream_keys import generate_stream_key
from smc_live.main import app


def start_body(stream_key: str | None = None, **overrides) -> dict:
    stream_key = stream_key or generate_stream_key()
    body = {
        "title": "Sunday Service",
        "speaker": "Pastor A",
        "description": "Morning worship",
        "category": "sunday-service",
        "autoRecord": True,
        "streamKey": stream_key,
        "rtmpConfig": {
            "serverUrl": "rtmp://localhost:1935/live",
            "streamKey": stream_key,
            "hlsUrl": f"http://localhost:8000/live/{stream_key}/index.m3u8",
            "autoRecord": True,
            "recordingFormat": "mp4",
        },
        "recordingId": "rec_test",
    }
    body.update(overrides)
    return body


@pytest.fixture
def service(memory_store, settings) -> BroadcastService:
    return BroadcastService(store=memory_store, settings=settings)


@pytest.fixture
def client(service: BroadcastService):
    app.dependency_overrides[get_broadcast_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestLiveStatus:
    """Tests for GET /api/v1/sermons/live/status."""

    def test_offline(self, client: TestClient):
        # Act
        response = client.get("/api/v1/sermons/live/status")

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["isLive"] is False
        assert data["data"]["offlineMessage"] == "No live stream currently active."

    def test_live(self, client: TestClient):
        body = start_body()
        started = client.post("/api/v1/sermons/admin/live/start", json=body).json()

        data = client.get("/api/v1/sermons/live/status").json()

        assert data["isLive"] is True
        assert data["data"]["sermonId"] == started["sermon"]["sermonId"]
        assert data["data"]["liveStreamUrl"] == f"http://localhost:8000/live/{body['streamKey']}/index.m3u8"
        assert data["data"]["rtmpConfig"]["streamKey"] == body["streamKey"]


class TestLiveStats:
    def test_no_stats_when_offline(self, client: TestClient):
        data = client.get("/api/v1/sermons/live/stats").json()

        assert data["success"] is True
        assert data["results"] is None

    def test_stats_when_live(self, client: TestClient):
        body = start_body()
        client.post("/api/v1/sermons/admin/live/start", json=body)

        results = client.get("/api/v1/sermons/live/stats").json()["results"]

        assert results["streamKey"] == body["streamKey"]
        assert results["title"] == "Sunday Service"
        assert results["viewers"] == 0


class TestStartLive:
    """Tests for POST /api/v1/sermons/admin/live/start."""

    def test_start_success(self, client: TestClient):
        # Arrange
        body = start_body()

        # Act
        response = client.post("/api/v1/sermons/admin/live/start", json=body)

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Live stream started successfully"
        assert data["sermon"]["status"] == "live"
        assert data["sermon"]["isLive"] is True
        assert data["sermon"]["streamKey"] == body["streamKey"]
        assert body["streamKey"] in data["sermon"]["hlsPlaybackUrl"]
        assert data["sermon"]["recordingId"] == "rec_test"
        assert data["streamingConfig"]["serverUrl"] == "rtmp://localhost:1935/live"

    def test_duplicate_stream_key(self, client: TestClient):
        body = start_body()
        client.post("/api/v1/sermons/admin/live/start", json=body)

        response = client.post("/api/v1/sermons/admin/live/start", json=start_body(body["streamKey"]))

        assert response.status_code == 409
        data = response.json()
        assert data["success"] is False
        assert data["errcode"] == "E_STREAM_KEY_IN_USE"
        assert data["erresid"]

    def test_blank_title(self, client: TestClient):
        response = client.post("/api/v1/sermons/admin/live/start", json=start_body(title=""))

        assert response.status_code == 400
        assert response.json()["errcode"] == "E_INVALID_REQUEST"

    def test_missing_fields(self, client: TestClient):
        response = client.post("/api/v1/sermons/admin/live/start", json={"title": "Sunday Service"})

        assert response.status_code == 422
        assert response.json()["errcode"] == "E_INVALID_PARAMS"

    def test_api_key_required_when_configured(self, client: TestClient, settings):
        secured = settings.model_copy(update={"ADMIN_API_TOKEN": "s3cret"})

        with patch.object(app_config, "_app_environ_config", secured):
            denied = client.post("/api/v1/sermons/admin/live/start", json=start_body())
            allowed = client.post(
                "/api/v1/sermons/admin/live/start", json=start_body(), headers={"X-Api-Key": "s3cret"}
            )

        assert denied.status_code == 401
        assert denied.json()["errcode"] == "E_UNAUTHORIZED"
        assert allowed.status_code == 200


class TestStopLive:
    """Tests for POST /api/v1/sermons/admin/live/stop."""

    def test_stop_success(self, client: TestClient):
        started = client.post("/api/v1/sermons/admin/live/start", json=start_body()).json()
        sermon_id = started["sermon"]["sermonId"]

        response = client.post("/api/v1/sermons/admin/live/stop", json={"sermonId": sermon_id})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["sermon"]["status"] == "ended"
        assert data["sermon"]["recordingStatus"] == "processing"
        assert client.get("/api/v1/sermons/live/status").json()["isLive"] is False

    def test_stop_twice(self, client: TestClient):
        started = client.post("/api/v1/sermons/admin/live/start", json=start_body()).json()
        sermon_id = started["sermon"]["sermonId"]
        client.post("/api/v1/sermons/admin/live/stop", json={"sermonId": sermon_id})

        response = client.post("/api/v1/sermons/admin/live/stop", json={"sermonId": sermon_id})

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_stop_without_id(self, client: TestClient):
        response = client.post("/api/v1/sermons/admin/live/stop", json={})

        assert response.status_code == 400
        assert response.json()["errcode"] == "E_INVALID_REQUEST"

    def test_stop_unknown(self, client: TestClient):
        response = client.post("/api/v1/sermons/admin/live/stop", json={"sermonId": "sm_missing"})

        assert response.status_code == 404
        assert response.json()["errcode"] == "E_SERMON_NOT_FOUND"


class TestCancelAndUpdate:
    def test_cancel_live_session_conflicts(self, client: TestClient):
        started = client.post("/api/v1/sermons/admin/live/start", json=start_body()).json()

        response = client.post(
            "/api/v1/sermons/admin/live/cancel", json={"sermonId": started["sermon"]["sermonId"]}
        )

        assert response.status_code == 409
        assert response.json()["errcode"] == "E_INVALID_TRANSITION"

    def test_update_sermon(self, client: TestClient):
        started = client.post("/api/v1/sermons/admin/live/start", json=start_body()).json()
        sermon_id = started["sermon"]["sermonId"]

        response = client.put(
            f"/api/v1/sermons/admin/{sermon_id}",
            json={"status": "ended", "isLive": False, "recordingStatus": "processing"},
        )

        assert response.status_code == 200
        results = response.json()["results"]
        assert results["status"] == "ended"
        assert results["isLive"] is False

    def test_update_negative_viewers_rejected(self, client: TestClient):
        started = client.post("/api/v1/sermons/admin/live/start", json=start_body()).json()

        response = client.put(f"/api/v1/sermons/admin/{started['sermon']['sermonId']}", json={"viewers": -1})

        assert response.status_code == 422


class TestListSermons:
    def test_list(self, client: TestClient):
        client.post("/api/v1/sermons/admin/live/start", json=start_body())
        client.post("/api/v1/sermons/admin/live/start", json=start_body(speaker="Elder C"))

        response = client.get("/api/v1/sermons", params={"speaker": "elder"})

        assert response.status_code == 200
        results = response.json()["results"]
        assert results["total"] == 1
        assert results["currentPage"] == 1
        assert results["totalPages"] == 1
        assert results["sermons"][0]["speaker"] == "Elder C"


def test_health(client: TestClient):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["results"] == "OK"
