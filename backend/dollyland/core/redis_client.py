"""
Redis 客户端：缓存与限流共用，懒加载
"""
import logging

import redis

from dollyland.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis():
    """获取 Redis 客户端；未配置或创建失败返回 None，调用方按降级处理"""
    global _redis_client
    if _redis_client is None:
        if not settings.REDIS_URL.strip():
            return None
        try:
            _redis_client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        except Exception as e:
            logger.warning("Redis 客户端创建失败，缓存与限流将不生效: %s", e)
    return _redis_client
