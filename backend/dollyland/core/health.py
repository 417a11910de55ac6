"""
依赖健康检查：数据库、Redis、MinIO 连通性与 Stripe 配置，由 GET /health 汇总
"""
import asyncio
import logging
from typing import Any, Dict, Tuple

from sqlalchemy import text

from dollyland.core.config import settings
from dollyland.core.database import engine
from dollyland.core.redis_client import get_redis
from dollyland.services.file_service import get_minio_client

logger = logging.getLogger(__name__)

CheckResult = Tuple[bool, str]


async def check_db() -> CheckResult:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("健康检查：数据库不可用: %s", e)
        return False, str(e)
    return True, "ok"


def check_redis() -> CheckResult:
    r = get_redis()
    if r is None:
        return False, "REDIS_URL 未配置"
    try:
        r.ping()
    except Exception as e:
        logger.warning("健康检查：Redis 不可用: %s", e)
        return False, str(e)
    return True, "ok"


def check_minio() -> CheckResult:
    """存储桶由首次上传创建，尚未创建不算异常"""
    try:
        exists = get_minio_client().bucket_exists(settings.MINIO_BUCKET_NAME)
    except Exception as e:
        logger.warning("健康检查：MinIO 不可用: %s", e)
        return False, str(e)
    return True, "ok" if exists else f"存储桶 {settings.MINIO_BUCKET_NAME} 尚未创建"


def has_stripe_key() -> bool:
    return bool(settings.STRIPE_SECRET_KEY.strip())


async def collect_health() -> Dict[str, Any]:
    """汇总各依赖状态；任一依赖异常时 status 为 degraded"""
    checks = {
        "database": await check_db(),
        "redis": await asyncio.to_thread(check_redis),
        "minio": await asyncio.to_thread(check_minio),
    }
    return {
        "status": "healthy" if all(ok for ok, _ in checks.values()) else "degraded",
        "service": "dollyland-api",
        "dependencies": {name: {"ok": ok, "message": message} for name, (ok, message) in checks.items()},
        "stripe_configured": has_stripe_key(),
    }
