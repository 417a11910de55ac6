"""
数据库连接：异步 engine、会话工厂与 FastAPI 依赖
"""
from typing import AsyncGenerator, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from dollyland.core.config import settings

Base = declarative_base()


def _database_url() -> str:
    # 未配置时退回本地 sqlite，便于开发与测试
    return settings.DATABASE_URL.strip() or "sqlite+aiosqlite:///./dollyland.db"


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": False}
    return {"echo": False, "pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


engine = create_async_engine(_database_url(), **_engine_kwargs(_database_url()))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话（请求级）"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def create_async_engine_and_session_for_celery() -> Tuple[AsyncEngine, async_sessionmaker]:
    """为 Celery 任务创建绑定当前事件循环的 engine 与会话工厂，用完需 dispose。"""
    url = _database_url()
    task_engine = create_async_engine(url, echo=False, pool_pre_ping=not url.startswith("sqlite"))
    session_factory = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    return task_engine, session_factory
