"""
测试公共夹具：内存 sqlite、覆盖 get_db 的 ASGI 客户端、Redis 降级、登录用户
"""
import os

# 必须在导入 dollyland 之前设置，Settings 在导入时读取环境变量
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("SECRET_KEY", "test-secret")

from typing import AsyncGenerator, Dict, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import dollyland.models  # noqa: F401  注册全部表
from dollyland.core.database import Base, get_db
from dollyland.main import app
from dollyland.models.user import User
from dollyland.schemas.auth import UserCreate
from dollyland.services.auth_service import AuthService


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """缓存与限流全部走 Redis 不可用的降级分支"""
    monkeypatch.setattr("dollyland.services.cache_service.get_redis", lambda: None)
    monkeypatch.setattr("dollyland.services.rate_limit_service.get_redis", lambda: None)


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """请求级会话与测试共用同一个内存库"""
    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def create_user(db: AsyncSession, username: str = "alice") -> Tuple[User, Dict[str, str]]:
    """注册用户并返回 (用户, Bearer 请求头)"""
    service = AuthService(db)
    user = await service.register_user(UserCreate(
        username=username,
        email=f"{username}@example.com",
        password="secret123",
    ))
    token = service.create_access_token({"sub": user.username})
    return user, {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def user_and_headers(db_session) -> Tuple[User, Dict[str, str]]:
    return await create_user(db_session)


@pytest.fixture
def auth_headers(user_and_headers) -> Dict[str, str]:
    return user_and_headers[1]


@pytest.fixture
def make_user(db_session):
    async def _make(username: str = "bob") -> Tuple[User, Dict[str, str]]:
        return await create_user(db_session, username)
    return _make
