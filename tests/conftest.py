import logging
import re

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.api.dependencies import Services
from src.api.main import create_app
from src.core import db
from src.core.catalog import GameCatalogClient
from src.core.models import Base, User

# Configure logging for tests
logging.basicConfig(level=logging.INFO)

# Game IDs the fake catalog answers with a server error
BROKEN_GAME_IDS = {666}


@pytest.fixture(scope="function", autouse=True)
async def setup_test_db():
    """
    Override the production DB engine with an in-memory SQLite engine for tests.
    This ensures tests are isolated and don't affect the file-based DB.
    """
    test_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    # Collaborators call 'db.AsyncSessionLocal()' at use time, so patching works
    original_engine = db.engine
    original_sessionmaker = db.AsyncSessionLocal

    db.engine = test_engine
    db.AsyncSessionLocal = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    await db.engine.dispose()

    db.engine = original_engine
    db.AsyncSessionLocal = original_sessionmaker


def fake_rawg(request: httpx.Request) -> httpx.Response:
    """Minimal stand-in for the RAWG API."""
    match = re.fullmatch(r"/api/games/(\d+)", request.url.path)
    if match:
        game_id = int(match.group(1))
        if game_id in BROKEN_GAME_IDS:
            return httpx.Response(500, json={"detail": "boom"})
        return httpx.Response(
            200,
            json={
                "id": game_id,
                "name": f"Game {game_id}",
                "background_image": f"https://media.example.com/{game_id}.jpg",
            },
        )

    if request.url.path == "/api/games":
        query = request.url.params.get("search", "")
        return httpx.Response(
            200,
            json={
                "count": 2,
                "results": [
                    {"id": 42, "name": f"{query} One", "background_image": None, "rating": 4.1},
                    {"id": 43, "name": f"{query} Two", "background_image": None, "rating": 3.9},
                ],
            },
        )

    return httpx.Response(404, json={"detail": "Not found."})


@pytest.fixture
def catalog():
    return GameCatalogClient(
        api_key="test-key",
        base_url="https://rawg.test/api",
        timeout=1.0,
        transport=httpx.MockTransport(fake_rawg),
    )


@pytest.fixture
def services(catalog):
    return Services.build(catalog=catalog)


@pytest.fixture
async def users():
    """Three users, each with an API token equal to '<id>-token'."""
    async with db.AsyncSessionLocal() as session:
        for user_id, name in [("u1", "Alice"), ("u2", "Bob"), ("u3", "Carol")]:
            session.add(User(id=user_id, name=name, api_token=f"{user_id}-token"))
        await session.commit()
    return ["u1", "u2", "u3"]


@pytest.fixture
async def client(services, users):
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
