"""Tests for the RTMP server callbacks."""

import pytest
from fastapi.testclient import TestClient

from smc_live.api.v1.routers.sermon_live import get_broadcast_service
from smc_live.domain.live.broadcast.broadcast_domain import BroadcastService
from smc_live.domain.live.broadcast.broadcast_models import RtmpConfigData, StartLivePayload
from smc_live.domain.live.broadcast.stream_keys import generate_stream_key
from smc_live.main import app
from smc_live.schemas import BroadcastStatus


@pytest.fixture
def service(memory_store, settings) -> BroadcastService:
    # Sessions stay PENDING until the encoder publishes
    return BroadcastService(
        store=memory_store,
        settings=settings.model_copy(update={"BROADCAST_AUTO_PROMOTE": False}),
    )


@pytest.fixture
def client(service: BroadcastService):
    app.dependency_overrides[get_broadcast_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


async def configure(service: BroadcastService) -> str:
    stream_key = generate_stream_key()
    await service.start_live(
        StartLivePayload(
            title="Sunday Service",
            speaker="Pastor A",
            stream_key=stream_key,
            rtmp_config=RtmpConfigData(server_url="rtmp://localhost:1935/live", stream_key=stream_key),
        )
    )
    return stream_key


async def test_publish_promotes_pending_session(client: TestClient, service: BroadcastService):
    # Arrange
    stream_key = await configure(service)

    # Act
    response = client.post("/api/v1/webhooks/stream/publish", json={"streamKey": stream_key})

    # Assert
    assert response.status_code == 200
    results = response.json()["results"]
    assert results["status"] == "live"
    assert results["isLive"] is True
    assert results["encoderConnected"] is True
    assert results["startedAt"] is not None


async def test_publish_accepts_nginx_name_field(client: TestClient, service: BroadcastService):
    stream_key = await configure(service)

    response = client.post("/api/v1/webhooks/stream/publish", json={"name": stream_key})

    assert response.status_code == 200
    assert response.json()["results"]["streamKey"] == stream_key


def test_publish_unknown_key_rejected(client: TestClient):
    response = client.post("/api/v1/webhooks/stream/publish", json={"streamKey": generate_stream_key()})

    assert response.status_code == 404
    assert response.json()["errcode"] == "E_STREAM_KEY_NOT_FOUND"


async def test_publish_after_stop_rejected(client: TestClient, service: BroadcastService, memory_store):
    stream_key = await configure(service)
    session = await memory_store.find_by_stream_key(stream_key)
    await service.stop_live(session.sermon_id)

    response = client.post("/api/v1/webhooks/stream/publish", json={"streamKey": stream_key})

    assert response.status_code == 403
    assert response.json()["errcode"] == "E_INVALID_TRANSITION"


async def test_unpublish_keeps_session_live(client: TestClient, service: BroadcastService):
    stream_key = await configure(service)
    client.post("/api/v1/webhooks/stream/publish", json={"streamKey": stream_key})

    response = client.post("/api/v1/webhooks/stream/unpublish", json={"streamKey": stream_key})

    assert response.status_code == 200
    results = response.json()["results"]
    assert results["encoderConnected"] is False
    assert results["status"] == BroadcastStatus.LIVE.value


async def test_viewer_count_never_negative(client: TestClient, service: BroadcastService):
    stream_key = await configure(service)

    client.post("/api/v1/webhooks/stream/play", json={"streamKey": stream_key})
    client.post("/api/v1/webhooks/stream/play_done", json={"streamKey": stream_key})
    response = client.post("/api/v1/webhooks/stream/play_done", json={"streamKey": stream_key})

    assert response.status_code == 200
    assert response.json()["results"]["viewers"] == 0
