"""操作审计 API"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.models.audit_log import AuditLog
from dollyland.schemas.audit import AuditLogResponse, AuditLogListResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.schemas.auth import UserResponse

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    action: Optional[str] = Query(None, description="按操作类型筛选，如 create_agent"),
    resource_type: Optional[str] = Query(None, description="按资源类型筛选，如 agent、payout"),
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """当前用户自己的操作记录，按时间倒序分页"""
    filters = [AuditLog.user_id == current_user.id]
    if action:
        filters.append(AuditLog.action == action)
    if resource_type:
        filters.append(AuditLog.resource_type == resource_type)
    total = (await db.execute(select(func.count()).select_from(AuditLog).where(*filters))).scalar() or 0
    result = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(log) for log in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
    )
