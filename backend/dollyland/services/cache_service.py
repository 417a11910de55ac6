"""
Redis 缓存服务：会话、公开智能体、套餐等读多写少的数据
与限流共用同一 Redis 实例，使用 key 前缀 cache: 区分。
Redis 不可用时所有操作静默降级（get 返回 None，写操作返回 False/0）。
"""
import json
import logging
from typing import Any, Optional

from dollyland.core.config import settings
from dollyland.core.redis_client import get_redis

logger = logging.getLogger(__name__)


def _key(name: str) -> str:
    return f"{settings.CACHE_KEY_PREFIX}{name}"


def _client():
    if not settings.CACHE_ENABLED:
        return None
    return get_redis()


def get(key: str) -> Optional[Any]:
    """读取并反序列化 JSON，未命中返回 None"""
    r = _client()
    if r is None:
        return None
    try:
        raw = r.get(_key(key))
    except Exception as e:
        logger.debug("缓存读取失败 %s: %s", key, e)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.debug("缓存内容不是合法 JSON，已忽略: %s", key)
        return None


def set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """写入缓存，ttl 秒，默认 CACHE_TTL_LIST"""
    r = _client()
    if r is None:
        return False
    try:
        payload = json.dumps(value, ensure_ascii=False, default=str)
        r.setex(_key(key), ttl or settings.CACHE_TTL_LIST, payload)
        return True
    except Exception as e:
        logger.debug("缓存写入失败 %s: %s", key, e)
        return False


def delete(key: str) -> bool:
    r = _client()
    if r is None:
        return False
    try:
        r.delete(_key(key))
        return True
    except Exception as e:
        logger.debug("缓存删除失败 %s: %s", key, e)
        return False


def delete_by_prefix(prefix: str) -> int:
    """按前缀批量失效，返回删除数量"""
    r = _client()
    if r is None:
        return 0
    removed = 0
    try:
        for k in r.scan_iter(match=f"{_key(prefix)}*"):
            removed += r.delete(k) or 0
    except Exception as e:
        logger.debug("缓存按前缀删除失败 %s: %s", prefix, e)
    return removed


# ---------- 业务 key 约定，便于统一失效 ---------- #
def key_plan_list() -> str:
    return "plans:active"


def key_public_agents(page: int, page_size: int) -> str:
    return f"agents:public:p:{page}:ps:{page_size}"


def key_conv_list(user_id: int, agent_id: Optional[int], page: int, page_size: int) -> str:
    return f"conv:list:user:{user_id}:agent:{agent_id or 'all'}:p:{page}:ps:{page_size}"


def key_conv_detail(conv_id: int) -> str:
    return f"conv:detail:{conv_id}"


def prefix_public_agents() -> str:
    return "agents:public:"


def prefix_user_conv_list(user_id: int) -> str:
    return f"conv:list:user:{user_id}:"


def invalidate_conversation_cache(user_id: int, conv_id: int) -> None:
    """会话或消息变更后调用：使该会话详情与该用户会话列表缓存失效"""
    delete(key_conv_detail(conv_id))
    delete_by_prefix(prefix_user_conv_list(user_id))
