"""
用量与限流：按用户限制每日对话条数与上传次数，按部署限制开放 API 每小时请求数，使用 Redis 计数
"""
import logging
from datetime import datetime, timezone

from dollyland.core.config import settings
from dollyland.core.redis_client import get_redis

logger = logging.getLogger(__name__)


def _daily_key(kind: str, user_id: int) -> str:
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return f"rate:{kind}:user:{user_id}:day:{day}"


def _hourly_key(kind: str, ident: int) -> str:
    hour = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H")
    return f"rate:{kind}:id:{ident}:hour:{hour}"


def _check_and_incr(key: str, limit: int, ttl: int) -> tuple[bool, int, int]:
    """
    窗口计数 +1 并判断是否超限。返回 (是否允许, 当前计数, 上限)。
    未启用限流或 Redis 不可用时放行，返回 (True, 0, limit)。
    """
    if not settings.RATE_LIMIT_ENABLED:
        return True, 0, limit
    r = get_redis()
    if r is None:
        return True, 0, limit
    try:
        n = r.incr(key)
        if n == 1:
            r.expire(key, ttl)
    except Exception as e:
        logger.warning("限流 Redis 操作失败，本次放行: %s", e)
        return True, 0, limit
    return n <= limit, n, limit


def _check_and_incr_daily(kind: str, user_id: int, limit: int) -> tuple[bool, int, int]:
    return _check_and_incr(_daily_key(kind, user_id), limit, 86400 * 2)


def check_and_incr_conversation(user_id: int) -> tuple[bool, int, int]:
    """检查并增加当日对话条数"""
    return _check_and_incr_daily("chat", user_id, settings.RATE_LIMIT_CONVERSATION_PER_DAY)


def check_and_incr_upload(user_id: int) -> tuple[bool, int, int]:
    """检查并增加当日上传次数（文件与网页来源合并计数）"""
    return _check_and_incr_daily("upload", user_id, settings.RATE_LIMIT_UPLOAD_PER_DAY)


def check_and_incr_deployment(deployment_id: int, limit: int) -> tuple[bool, int, int]:
    """开放 API：按部署统计每小时请求数"""
    return _check_and_incr(_hourly_key("agent_api", deployment_id), limit, 3600 * 2)
