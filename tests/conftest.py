import os
import warnings

import pytest

warnings.filterwarnings("ignore", category=DeprecationWarning, module="beanie.*")

# Set test environment variables before smc_live reads its configuration
os.environ.update(
    {
        "DEBUG": "false",
        "ADMIN_API_TOKEN": "",
        "CHURCH_API_TOKEN": "",
        "THUMBNAIL_UPLOAD_URL": "",
        "BROADCAST_AUTO_PROMOTE": "true",
        "BROADCAST_ENFORCE_SINGLE_ACTIVE": "false",
    }
)

from smc_live.app_config import AppEnvironConfig  # noqa: E402

# Import database fixtures so they are available to all tests
from tests.fixtures.memory_store import InMemoryBroadcastSessionStore  # noqa: E402
from tests.fixtures.mongo_fixtures import *  # noqa: E402, F403


@pytest.fixture
def settings() -> AppEnvironConfig:
    """Settings with the documented defaults, independent of env.local."""
    return AppEnvironConfig(
        DEBUG=False,
        ADMIN_API_TOKEN=None,
        RTMP_SERVER_URL="rtmp://localhost:1935/live",
        HLS_BASE_URL="http://localhost:8000",
        RECORDING_FORMAT="mp4",
        LIVE_OFFLINE_MESSAGE="No live stream currently active.",
        BROADCAST_AUTO_PROMOTE=True,
        BROADCAST_ENFORCE_SINGLE_ACTIVE=False,
        STREAM_KEY_MAX_ATTEMPTS=5,
        CHURCH_API_BASE_URL="http://church.test",
        CHURCH_API_TOKEN=None,
        THUMBNAIL_UPLOAD_URL=None,
        THUMBNAIL_DATA_URI_MAX_BYTES=512 * 1024,
        LIVE_POLL_INTERVAL_LIVE_MS=5000,
        LIVE_POLL_INTERVAL_IDLE_MS=15000,
        LIVE_REFRESH_DELAY_MS=1500,
        DURABILITY_MAX_ATTEMPTS=3,
        DURABILITY_BASE_DELAY_SECONDS=0.0,
        DURABILITY_MAX_DELAY_SECONDS=0.0,
    )


@pytest.fixture
def memory_store() -> InMemoryBroadcastSessionStore:
    return InMemoryBroadcastSessionStore()
