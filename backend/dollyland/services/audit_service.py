"""
操作审计与集成调用日志：写入 audit_logs / integration_logs 表
"""
import json
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.models.audit_log import AuditLog
from dollyland.models.integration_log import IntegrationLog

logger = logging.getLogger(__name__)


async def log_audit(
    db: AsyncSession,
    user_id: int,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    detail: Optional[dict[str, Any]] = None,
    ip: Optional[str] = None,
    request_id: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """写入一条审计日志；未启用 AUDIT_LOG_ENABLED 时跳过。写入失败只记日志，不影响主流程。"""
    if not settings.AUDIT_LOG_ENABLED:
        return
    if isinstance(detail, dict):
        detail_str = json.dumps(detail, ensure_ascii=False, default=str)
    else:
        detail_str = str(detail) if detail else None
    db.add(AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        detail=detail_str,
        ip=ip,
        user_agent=(user_agent or "")[:255] or None,
        request_id=request_id,
    ))
    try:
        await db.commit()
    except Exception as e:
        logger.warning("审计日志写入失败: %s", e)
        await db.rollback()


async def log_integration(
    db: AsyncSession,
    user_id: int,
    integration_type: str,
    action: str,
    success: bool,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    """记录一次第三方集成调用（GitHub、Linear）"""
    db.add(IntegrationLog(
        user_id=user_id,
        integration_type=integration_type,
        action=action,
        success=success,
        log_metadata={"action": action, "success": success, **(metadata or {})},
    ))
    try:
        await db.commit()
    except Exception as e:
        logger.warning("集成日志写入失败 %s/%s: %s", integration_type, action, e)
        await db.rollback()
