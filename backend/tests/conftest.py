"""Test fixtures."""

import os

# Settings are read once at import time, so the environment has to be in place first.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_MODE", "local")
os.environ.setdefault("JWT_SECRET_KEY", "test-signing-key")
os.environ.setdefault("INTEGRATION_ENCRYPTION_KEYS", "k1:" + "MDAw" * 10 + "MDA=")
os.environ.setdefault("INTEGRATION_ENCRYPTION_ACTIVE_KEY", "k1")

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from qms_core.core.config import get_settings
from qms_core.core.encryption.secret_codec import SecretCodec
from qms_core.db.base import Base
from qms_core.db.session import get_async_db_session
from qms_core.main import app
from qms_core.services.access_control import RolePolicy

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def make_token(*roles: str, sub: str = "user-1", username: str = "admin.user") -> str:
    return jwt.encode(
        {"sub": sub, "preferred_username": username, "roles": list(roles)},
        get_settings().jwt_secret_key,
        algorithm="HS256",
    )


def auth_header(*roles: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(*roles)}"}


@pytest.fixture
def codec() -> SecretCodec:
    return SecretCodec(keys={"k1": b"0" * 32}, active_key_id="k1")


@pytest.fixture
async def db_engine():
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with async_session() as session:
        yield session


@pytest.fixture
async def client(db_session, codec):
    async def override_get_db():
        yield db_session

    app.state.secret_codec = codec
    app.state.role_policy = RolePolicy.admin_only()
    app.dependency_overrides[get_async_db_session] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
