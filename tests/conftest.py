"""Shared test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (aiosqlite + StaticPool) with
all tables created from the models, so code paths that commit are isolated
without a running PostgreSQL. Email and realtime collaborators are replaced
with recording fakes.
"""

import uuid
from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from trainfit.auth.jwt import create_access_token
from trainfit.database import Base, get_db
from trainfit.main import app
from trainfit.models.user import TrainerClient, User
from trainfit.ratelimit import InMemoryCounterStore
from trainfit.realtime import get_realtime
from trainfit.services.email_service import EmailResult, get_email_sender

# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeEmailSender:
    """Records every send; fails when ``fail`` is set."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False
        self.raise_error = False

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        if self.raise_error:
            raise ConnectionError("SMTP relay unreachable")
        if self.fail:
            return EmailResult(success=False, error="Mailbox unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return EmailResult(success=True, message_id=f"msg_{len(self.sent)}")


class FakeRealtime:
    """Records emitted events; raises when ``fail`` is set."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []
        self.fail = False

    async def emit(self, channel: str, event: str, payload: dict) -> int:
        if self.fail:
            raise RuntimeError("socket server down")
        self.events.append((channel, event, payload))
        return 1


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def realtime() -> FakeRealtime:
    return FakeRealtime()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    email_sender: FakeEmailSender,
    realtime: FakeRealtime,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB session and fakes."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_realtime] = lambda: realtime
    app.state.counter_store = InMemoryCounterStore()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users and relationships
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable:
    """Factory: ``await make_user(role="trainer", name="Ana")``.

    Users are committed so a route that rolls back never takes them along.
    """

    async def _make_user(role: str = "client", name: str | None = None, **fields) -> User:
        unique = uuid.uuid4().hex[:8]
        fields.setdefault("is_active", True)
        user = User(
            email=f"{role}-{unique}@test.com",
            name=name or f"Test {role.title()}",
            role=role,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


def auth_headers_for(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def trainer(make_user) -> User:
    return await make_user(role="trainer", name="Coach Carla")


@pytest_asyncio.fixture
async def client_user(make_user) -> User:
    return await make_user(role="client", name="Client Charlie")


@pytest_asyncio.fixture
async def linked_client(db_session: AsyncSession, trainer: User, client_user: User) -> User:
    """``client_user`` with an established relationship to ``trainer``."""
    db_session.add(TrainerClient(trainer_id=trainer.id, client_id=client_user.id))
    await db_session.commit()
    return client_user


@pytest.fixture
def trainer_headers(trainer: User) -> dict[str, str]:
    return auth_headers_for(trainer)


@pytest.fixture
def client_headers(client_user: User) -> dict[str, str]:
    return auth_headers_for(client_user)
