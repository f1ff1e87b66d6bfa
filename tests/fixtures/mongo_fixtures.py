"""MongoDB/Beanie fixtures for testing."""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from smc_live.schemas import Sermon

# All Beanie document models
BEANIE_MODELS = [Sermon]


@pytest.fixture(scope="session")
def mongo_url() -> str:
    """
    Get MongoDB URL for testing.

    Tests that need MongoDB are skipped when MONGO_URL_SMC_PRIMARY is not set.
    """
    url = os.environ.get("MONGO_URL_SMC_PRIMARY")
    if not url:
        pytest.skip("MONGO_URL_SMC_PRIMARY environment variable not set for tests.")
    return url


@pytest.fixture(scope="session")
def test_db_name() -> str:
    """Get test database name."""
    return "smc_live_test_db"


@pytest_asyncio.fixture(scope="function")
async def mongo_client(mongo_url: str) -> AsyncGenerator[AsyncIOMotorClient]:
    """Create MongoDB client for testing (function-scoped to avoid event loop issues)."""
    client: AsyncIOMotorClient = AsyncIOMotorClient(mongo_url)
    yield client
    client.close()


@pytest_asyncio.fixture(scope="function")
async def beanie_db(
    mongo_client: AsyncIOMotorClient,
    test_db_name: str,
) -> AsyncGenerator[AsyncIOMotorDatabase]:
    """Initialize Beanie with the test database and yield it."""
    db = mongo_client[test_db_name]

    await init_beanie(
        database=db,  # type: ignore[arg-type]
        document_models=BEANIE_MODELS,
    )

    yield db


@pytest_asyncio.fixture
async def clean_beanie_db(beanie_db: AsyncIOMotorDatabase) -> AsyncIOMotorDatabase:
    """Beanie database with every collection emptied first."""
    for model in BEANIE_MODELS:
        await model.find_all().delete()
    return beanie_db
