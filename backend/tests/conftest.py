"""
Sandbox Pool - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from faker import Faker

# Set testing environment before anything reads settings
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test_sandboxpool.db'
os.environ['DAYTONA_API_KEY'] = 'test-daytona-key'
os.environ['ADMIN_API_KEY'] = 'test-admin-key'
os.environ['HELIUS_API_KEY'] = ''
os.environ['HELIUS_WEBHOOK_ID'] = ''
os.environ['HELIUS_WEBHOOK_URL'] = ''

from app.main import app
from app.core.database import Base, get_db
from app import models  # noqa: F401  register tables on Base.metadata
from tests.mocks.mock_sandbox_provider import MockSandboxProvider

fake = Faker()

# File database so concurrent sessions see each other's commits
TEST_DATABASE_URL = 'sqlite+aiosqlite:///./test_sandboxpool.db'
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
    connect_args={"timeout": 30},
)
TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False
)


@pytest.fixture(scope='function')
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh schema per test; yields the session factory for multi-session tests"""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield TestSessionLocal

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope='function')
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def provider() -> MockSandboxProvider:
    return MockSandboxProvider()


@pytest.fixture
def user_id() -> str:
    return fake.uuid4()


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database override"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


