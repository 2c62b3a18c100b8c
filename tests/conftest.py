import httpx
import pytest

from wristpass.auth import StaticTokenAuth
from wristpass.infra import timings
from wristpass.infra.sql import open_database
from wristpass.model.db import create_schema
from wristpass.server import create_app

from .helpers import ADMIN_TOKEN, TOKENS, ScriptedGateway, seed_catalog


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'wristpass.db'}"


@pytest.fixture
async def database(database_url):
    database = open_database(database_url)
    async with database.engine.begin() as conn:
        await create_schema(conn)
    yield database
    await database.dispose()


@pytest.fixture
def new_db(database):
    """Independent sessions, one per concurrent buyer."""
    return database.open


@pytest.fixture
async def db(database):
    async with database.open() as gdb:
        yield gdb


@pytest.fixture
async def catalog(database):
    return await seed_catalog(database.SessionAsync)


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture(autouse=True)
def _clear_timings():
    yield
    timings.reset()


# ---- HTTP

@pytest.fixture
async def app(database_url, gateway):
    app = create_app(
        database_url,
        auth=StaticTokenAuth(TOKENS),
        gateway=gateway,
        admin_token=ADMIN_TOKEN,
        payment_timeout=0.2,
        claim_ttl_seconds=60,
    )
    # ASGITransport does not run startup hooks
    async with app.state.database.engine.begin() as conn:
        await create_schema(conn)
    yield app
    await app.state.database.dispose()


@pytest.fixture
async def app_catalog(app):
    return await seed_catalog(app.state.database.SessionAsync)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport,
                                 base_url="http://test") as c:
        yield c
