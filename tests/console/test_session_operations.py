"""Tests for operator-side Configure and Stop."""

import pytest

from smc_live.console.console_errors import MissingIdentifier, UpstreamFailure, ValidationError
from smc_live.console.durability import DurabilityWriter
from smc_live.console.session_operations import ConfigureInput, SessionOperations, Thumbnail
from smc_live.domain.live.broadcast.broadcast_domain import BroadcastService
from smc_live.domain.live.broadcast.broadcast_models import BroadcastSession
from smc_live.domain.live.broadcast.stream_keys import STREAM_KEY_PATTERN, StreamKeyGenerator
from smc_live.schemas import BroadcastStatus, RecordingStatus
from smc_live.services.church_api.church_api_schemas import ChurchApiError
from tests.fixtures.fake_church_api import FakeChurchApi


class ScriptedKeys:
    """Key generator that hands out fixed keys first, then real ones."""

    def __init__(self, *keys: str):
        self._keys = list(keys)
        self._real = StreamKeyGenerator()

    def generate(self) -> str:
        return self._keys.pop(0) if self._keys else self._real.generate()

    def is_valid(self, stream_key: str | None) -> bool:
        return self._real.is_valid(stream_key)


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def api(memory_store, settings) -> FakeChurchApi:
    return FakeChurchApi(BroadcastService(store=memory_store, settings=settings))


@pytest.fixture
def durability() -> DurabilityWriter:
    return DurabilityWriter(max_attempts=3, base_delay=0.0, max_delay=0.0, sleep=no_sleep)


@pytest.fixture
def operations(api, durability, settings) -> SessionOperations:
    return SessionOperations(api, durability=durability, settings=settings)


class TestConfigure:
    async def test_configure_creates_live_session(self, operations: SessionOperations, api: FakeChurchApi):
        # Act
        session = await operations.configure(ConfigureInput(title="Sunday Service", speaker="Pastor A"))

        # Assert
        assert STREAM_KEY_PATTERN.match(session.stream_key)
        assert len(session.stream_key) <= 40
        assert session.stream_key in session.hls_playback_url
        assert session.hls_playback_url.endswith("/index.m3u8")
        assert session.status == BroadcastStatus.LIVE
        assert session.recording_id.startswith("rec_")
        assert len(api.called("start_live_stream")) == 1

    async def test_configure_uses_preview_key(self, operations: SessionOperations):
        preview = operations.preview()

        session = await operations.configure(ConfigureInput(title="T", speaker="S"), preview=preview)

        assert session.stream_key == preview.stream_key
        assert session.hls_playback_url == preview.hls_playback_url

    @pytest.mark.parametrize("title,speaker", [("", "Pastor A"), ("Sunday", "  "), ("   ", "")])
    async def test_blank_input_rejected_before_network(self, operations, api: FakeChurchApi, title, speaker):
        with pytest.raises(ValidationError):
            await operations.configure(ConfigureInput(title=title, speaker=speaker))

        assert api.calls == []

    async def test_key_collision_regenerates(self, api: FakeChurchApi, durability, settings, memory_store):
        # Arrange
        memory_store.sessions["sm_old"] = BroadcastSession(
            sermon_id="sm_old", status=BroadcastStatus.LIVE, is_live=True, stream_key="smc_taken1"
        )
        operations = SessionOperations(
            api, durability=durability, settings=settings, key_generator=ScriptedKeys("smc_taken1", "smc_fresh2")
        )

        # Act
        session = await operations.configure(ConfigureInput(title="T", speaker="S"))

        # Assert
        assert session.stream_key == "smc_fresh2"
        assert len(api.called("start_live_stream")) == 2

    async def test_upstream_refusal(self, operations: SessionOperations, api: FakeChurchApi):
        api.fail("start_live_stream", ChurchApiError("boom", status_code=500, errcode="E_INTERNAL_ERROR"))

        with pytest.raises(UpstreamFailure) as exc_info:
            await operations.configure(ConfigureInput(title="T", speaker="S"))

        assert exc_info.value.errcode == "E_INTERNAL_ERROR"
        assert exc_info.value.message == "boom"

    async def test_thumbnail_uploaded(self, operations: SessionOperations):
        thumbnail = Thumbnail("cover.png", b"\x89PNG", "image/png")

        session = await operations.configure(ConfigureInput(title="T", speaker="S", thumbnail=thumbnail))

        assert session.image_url == "https://cdn.test/cover.png"

    async def test_thumbnail_falls_back_to_data_uri(self, operations: SessionOperations, api: FakeChurchApi):
        api.fail("upload_thumbnail", ChurchApiError("upload down"))
        thumbnail = Thumbnail("cover.png", b"abc", "image/png")

        session = await operations.configure(ConfigureInput(title="T", speaker="S", thumbnail=thumbnail))

        assert session.image_url == "data:image/png;base64,YWJj"

    async def test_oversized_thumbnail_dropped_when_upload_fails(
        self, api: FakeChurchApi, durability: DurabilityWriter, settings
    ):
        operations = SessionOperations(
            api, durability=durability, settings=settings.model_copy(update={"THUMBNAIL_DATA_URI_MAX_BYTES": 4})
        )
        api.fail("upload_thumbnail", ChurchApiError("upload down"))
        thumbnail = Thumbnail("cover.png", b"\x89PNG-too-large", "image/png")

        session = await operations.configure(ConfigureInput(title="T", speaker="S", thumbnail=thumbnail))

        assert session.image_url is None
        assert session.status in (BroadcastStatus.PENDING, BroadcastStatus.LIVE)

    async def test_reconfigure_ended_sermon(self, operations: SessionOperations, durability, memory_store):
        first = await operations.configure(ConfigureInput(title="T", speaker="S"))
        await operations.stop(first.sermon_id, current=first)
        await durability.drain()

        second = await operations.configure(ConfigureInput(title="T2", speaker="S", sermon_id=first.sermon_id))

        assert second.sermon_id == first.sermon_id
        assert second.stream_key != first.stream_key
        assert second.title == "T2"
        assert list(memory_store.sessions) == [first.sermon_id]


class TestStop:
    async def configure(self, operations: SessionOperations) -> BroadcastSession:
        return await operations.configure(ConfigureInput(title="Sunday Service", speaker="Pastor A"))

    async def test_stop_ends_session(self, operations, durability, memory_store):
        session = await self.configure(operations)

        outcome = await operations.stop(session.sermon_id, current=session)
        await durability.drain()

        assert outcome.success is True
        assert outcome.error is None
        assert outcome.session.status == BroadcastStatus.ENDED
        assert outcome.session.is_live is False
        assert outcome.session.recording_status == RecordingStatus.PROCESSING
        assert outcome.session.ended_at is not None
        # Credentials of the ended session are cleared from the local record
        assert outcome.session.stream_key is None
        assert outcome.session.rtmp_config is None
        assert memory_store.sessions[session.sermon_id].status == BroadcastStatus.ENDED

    async def test_durability_failure_does_not_fail_stop(self, operations, api: FakeChurchApi, durability):
        session = await self.configure(operations)
        api.fail("update_sermon", RuntimeError("db down"), RuntimeError("db down"), RuntimeError("db down"))

        outcome = await operations.stop(session.sermon_id, current=session)
        await durability.drain()

        assert outcome.success is True
        assert outcome.session.status == BroadcastStatus.ENDED
        assert len(api.called("update_sermon")) == 3

    async def test_upstream_failure_still_ends_locally(self, operations, api: FakeChurchApi, durability, memory_store):
        session = await self.configure(operations)
        api.fail("stop_live_stream", ChurchApiError("gateway timeout", status_code=504))

        outcome = await operations.stop(session.sermon_id, current=session)
        await durability.drain()

        assert outcome.success is False
        assert outcome.error is not None
        assert outcome.message == "gateway timeout"
        assert outcome.session.status == BroadcastStatus.ENDED
        assert outcome.session.is_live is False
        # The durability write ends it on the backend
        assert memory_store.sessions[session.sermon_id].status == BroadcastStatus.ENDED

    async def test_stop_already_ended_is_noop(self, operations, api: FakeChurchApi, durability):
        session = await self.configure(operations)
        first = await operations.stop(session.sermon_id, current=session)
        api.calls.clear()

        second = await operations.stop(session.sermon_id, current=first.session)

        assert second.success is True
        assert second.session is first.session
        assert api.calls == []
        await durability.drain()

    async def test_stop_without_id(self, operations, api: FakeChurchApi):
        with pytest.raises(MissingIdentifier):
            await operations.stop(None)

        assert api.calls == []

    async def test_stop_without_current_record(self, operations, durability):
        session = await self.configure(operations)

        outcome = await operations.stop(session.sermon_id)
        await durability.drain()

        assert outcome.success is True
        assert outcome.session.sermon_id == session.sermon_id
        assert outcome.session.title == "Sunday Service"
