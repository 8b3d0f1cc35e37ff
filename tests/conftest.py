import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from kataba.core.database import Base
from kataba.services.identity import IdentityTokenService

OPENAI_KEY = "test-openai-key"


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def fake_openai_http():
    """httpx client routed in-process to the fake OpenAI app."""
    from tests.mocks.fake_openai import app as fake_openai_app, received_requests

    received_requests.clear()
    transport = ASGITransport(app=fake_openai_app)
    client = AsyncClient(transport=transport, base_url="http://fake-openai")
    yield client
    await client.aclose()


@pytest.fixture
def openai_provider(fake_openai_http):
    from kataba.services.completion.openai_client import OpenAICompletionProvider

    return OpenAICompletionProvider(
        base_url="http://fake-openai",
        api_key=OPENAI_KEY,
        model="gpt-4o-mini",
        http_client=fake_openai_http,
    )


@pytest.fixture
def token_service():
    return IdentityTokenService()


@pytest_asyncio.fixture
async def app_with_db(db_engine, session_factory, openai_provider):
    """FastAPI app wired to the in-memory test database and the fake OpenAI API."""
    import kataba.core.database as db_module

    # Patch the module-level engine and session factory
    original_engine = db_module.engine
    original_session = db_module.async_session
    db_module.engine = db_engine
    db_module.async_session = session_factory

    from kataba.main import app
    from kataba.services.conversations import SQLConversationStore
    from kataba.services.persistence import BackgroundSaver
    from kataba.services.users import UserService

    app.state.completion_provider = openai_provider
    app.state.conversation_store = SQLConversationStore(session_factory)
    app.state.user_service = UserService(session_factory)
    app.state.background_saver = BackgroundSaver()

    yield app

    await app.state.background_saver.drain()
    db_module.engine = original_engine
    db_module.async_session = original_session


def _client(app, token: str | None = None) -> AsyncClient:
    transport = ASGITransport(app=app)
    client = AsyncClient(transport=transport, base_url="http://test")
    if token:
        client.headers["Authorization"] = f"Bearer {token}"
    return client


@pytest_asyncio.fixture
async def auth_client(app_with_db, token_service):
    """Client signed in as user-1."""
    token = token_service.create_token(user_id="user-1", email="amina@example.com", name="Amina")
    async with _client(app_with_db, token) as client:
        yield client


@pytest_asyncio.fixture
async def other_client(app_with_db, token_service):
    """Client signed in as user-2."""
    token = token_service.create_token(user_id="user-2", email="yusuf@example.com", name="Yusuf")
    async with _client(app_with_db, token) as client:
        yield client


@pytest_asyncio.fixture
async def anon_client(app_with_db):
    """Guest client without a token."""
    async with _client(app_with_db) as client:
        yield client
