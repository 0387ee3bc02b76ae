import base64
import os
from dataclasses import dataclass

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import barbershop_api.models  # noqa: E402,F401 (registers tables)
from barbershop_api.app import create_app  # noqa: E402
from barbershop_api.db.base import Base  # noqa: E402
from barbershop_api.db.session import get_session, get_session_factory  # noqa: E402
from barbershop_api.observability.loyalty import get_loyalty_store  # noqa: E402
from barbershop_api.services.push import InMemoryPushBackend  # noqa: E402


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@dataclass
class GeneratedKeys:
    public_key: str
    private_key: str


def generate_p256_keys() -> GeneratedKeys:
    key = ec.generate_private_key(ec.SECP256R1())
    public_raw = key.public_key().public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    private_raw = key.private_numbers().private_value.to_bytes(32, "big")
    return GeneratedKeys(public_key=_b64url(public_raw), private_key=_b64url(private_raw))


@pytest.fixture
def vapid_keys() -> GeneratedKeys:
    return generate_p256_keys()


@pytest.fixture
def key_factory():
    return generate_p256_keys


@pytest.fixture
def browser_keys() -> dict[str, str]:
    """Keys a browser would hand out in ``PushSubscription.toJSON()``."""

    return {"p256dh": generate_p256_keys().public_key, "auth": _b64url(os.urandom(16))}


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    get_loyalty_store().reset()
    yield
    get_loyalty_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def push_backend() -> InMemoryPushBackend:
    return InMemoryPushBackend(public_key="test-public-key")


@pytest_asyncio.fixture
async def app_with_db(session_factory, push_backend):
    app = create_app()
    app.state.push_backend = push_backend

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Sessions on separate connections to one SQLite file, for concurrent writers."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'loyalty.db'}", connect_args={"timeout": 15})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()
