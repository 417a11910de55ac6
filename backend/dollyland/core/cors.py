"""
CORS 来源判断：生产白名单、开发环境本地地址、预览域名
"""
import re
from typing import List, Optional

from dollyland.core.config import settings


def allowed_origins() -> List[str]:
    """当前环境允许的固定来源列表（非生产环境追加本地开发地址）"""
    origins = list(settings.CORS_ORIGINS)
    if not settings.is_production:
        origins.extend(o for o in settings.CORS_DEV_ORIGINS if o not in origins)
    return origins


def is_origin_allowed(origin: Optional[str]) -> bool:
    if not origin:
        return False
    if origin in allowed_origins():
        return True
    if settings.CORS_ORIGIN_REGEX and re.match(settings.CORS_ORIGIN_REGEX, origin):
        return True
    return False
