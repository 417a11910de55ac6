"""
通用依赖：限流、请求上下文
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request

from dollyland.schemas.auth import UserResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.rate_limit_service import (
    check_and_incr_upload,
    check_and_incr_conversation,
)


def get_client_ip(request: Request) -> Optional[str]:
    """客户端 IP：优先反向代理传入的 X-Forwarded-For 首个地址"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


async def require_upload_rate_limit(
    current_user: UserResponse = Depends(get_current_active_user),
) -> UserResponse:
    """上传限流：超出每日上传次数返回 429。"""
    allowed, n, limit = check_and_incr_upload(current_user.id)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"每日上传次数已达上限（{limit}），请明日再试或升级套餐",
        )
    return current_user


async def require_chat_rate_limit(
    current_user: UserResponse = Depends(get_current_active_user),
) -> UserResponse:
    """对话限流：超出每日对话条数返回 429。"""
    allowed, n, limit = check_and_incr_conversation(current_user.id)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"每日对话条数已达上限（{limit}），请明日再试或升级套餐",
        )
    return current_user
