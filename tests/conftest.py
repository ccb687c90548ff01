"""Pytest configuration and fixtures."""
import os
import uuid
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

TEST_DB_PATH = Path("test_app.db")
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("LOG_FORMAT", "text")

from taskhub.main import app  # noqa: E402
from taskhub.config import settings  # noqa: E402
from taskhub.database import Base, get_db  # noqa: E402
from taskhub.models.dealership import Dealership  # noqa: E402
from taskhub.models.user import User  # noqa: E402
from taskhub.core.security import ROLE_PERMISSIONS  # noqa: E402
from taskhub.services.bootstrap_service import ensure_roles  # noqa: E402
from taskhub.services.event_publisher import event_publisher  # noqa: E402
from taskhub.services.storage_service import storage_service  # noqa: E402
from taskhub.tasks import proofs as proof_jobs  # noqa: E402
from taskhub.utils.security import create_access_token  # noqa: E402


# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session():
    """Create a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
def client(db_session: AsyncSession):
    """Create a test client overriding database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class FakeRedis:
    """Records published messages instead of talking to Redis."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis is down")
        self.messages.append((channel, message))
        return 1


class JobRecorder:
    """Stands in for ``Task.delay`` and remembers the arguments."""

    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


@pytest.fixture(autouse=True)
def temp_upload_dir(tmp_path, monkeypatch):
    """Stage uploads under the test's temporary directory."""
    upload_dir = tmp_path / "proof_uploads"
    monkeypatch.setattr(settings, "PROOF_TEMP_DIR", str(upload_dir))
    return upload_dir


@pytest.fixture(autouse=True)
def fake_storage():
    """In-memory object storage, emptied for every test."""
    storage_service._memory.clear()
    yield storage_service
    storage_service._memory.clear()


@pytest.fixture
def redis_factory():
    """Build standalone fake Redis clients."""
    return FakeRedis


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Capture task events."""
    redis_client = FakeRedis()
    monkeypatch.setattr(event_publisher, "_client_factory", lambda: redis_client)
    monkeypatch.setattr(event_publisher, "_client", None)
    return redis_client


@pytest.fixture(autouse=True)
def jobs(monkeypatch):
    """Record dispatched Celery jobs instead of sending them to a broker."""
    recorders = {
        "store_task_proofs": JobRecorder(),
        "store_task_shared_proofs": JobRecorder(),
        "delete_proof_files": JobRecorder(),
    }
    for name, recorder in recorders.items():
        monkeypatch.setattr(getattr(proof_jobs, name), "delay", recorder)
    return recorders


@pytest_asyncio.fixture
async def roles(db_session: AsyncSession):
    """Create the built-in roles."""
    return await ensure_roles(db_session, role_names=ROLE_PERMISSIONS.keys())


@pytest_asyncio.fixture
async def dealership(db_session: AsyncSession):
    """Create a dealership."""
    item = Dealership(id=uuid.uuid4(), name="North Motors", is_active=True)
    db_session.add(item)
    await db_session.commit()
    return item


@pytest_asyncio.fixture
async def other_dealership(db_session: AsyncSession):
    """Create a second dealership."""
    item = Dealership(id=uuid.uuid4(), name="South Motors", is_active=True)
    db_session.add(item)
    await db_session.commit()
    return item


@pytest.fixture
def make_user(db_session: AsyncSession, roles):
    """Factory creating a user with one role attached to a dealership."""

    async def _make_user(role_name: str, dealership_id=None, full_name=None) -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"{role_name}-{uuid.uuid4().hex[:8]}@example.com",
            full_name=full_name or role_name.title(),
            is_active=True,
            dealership_id=dealership_id,
        )
        user.roles = [roles[role_name]]
        user.dealerships = []
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest_asyncio.fixture
async def manager(make_user, dealership):
    return await make_user("manager", dealership.id, "Maria Manager")


@pytest_asyncio.fixture
async def owner(make_user):
    return await make_user("owner", None, "Oleg Owner")


@pytest_asyncio.fixture
async def employee(make_user, dealership):
    return await make_user("employee", dealership.id, "Ivan Employee")


@pytest_asyncio.fixture
async def employees(make_user, dealership):
    return [await make_user("employee", dealership.id, f"Employee {index}") for index in range(1, 4)]


def auth_headers_for(user: User) -> dict:
    """Bearer headers for a user."""
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Build bearer headers for any user."""
    return auth_headers_for


@pytest.fixture
def auth_headers(client, manager):
    """Get authentication headers."""
    return auth_headers_for(manager)
