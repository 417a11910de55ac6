"""
计费相关API：套餐、订阅状态、结账
"""
import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.core.config import settings
from dollyland.models.user import User
from dollyland.schemas.billing import (
    PlanResponse,
    PlanListResponse,
    SubscriptionStatusResponse,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutHealthResponse,
)
from dollyland.schemas.auth import UserResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.billing_service import BillingService
from dollyland.services import cache_service

router = APIRouter()


async def _load_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="用户不存在")
    return user


@router.get("/plans", response_model=PlanListResponse)
async def get_plans(db: AsyncSession = Depends(get_db)):
    """获取在售套餐（按月价升序，带 Redis 缓存）"""
    cache_key = cache_service.key_plan_list()
    cached = await asyncio.to_thread(cache_service.get, cache_key)
    if cached is not None:
        return PlanListResponse(**cached)
    plans = await BillingService(db).get_plans()
    out = PlanListResponse(
        plans=[PlanResponse.model_validate(p) for p in plans],
        total=len(plans),
    )
    await asyncio.to_thread(cache_service.set, cache_key, out.model_dump(mode="json"), settings.CACHE_TTL_LIST)
    return out


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def check_subscription(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """以 Stripe 为准同步并返回当前订阅"""
    user = await _load_user(db, current_user.id)
    try:
        return await BillingService(db).check_subscription(user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/checkout", response_model=CheckoutHealthResponse)
async def checkout_health():
    """结账服务健康检查"""
    return CheckoutHealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        has_stripe_key=bool(settings.STRIPE_SECRET_KEY),
    )


@router.post("/checkout", response_model=CheckoutResponse, response_model_exclude_none=True)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """创建结账会话；免费套餐直接开通"""
    user = await _load_user(db, current_user.id)
    try:
        return await BillingService(db).create_checkout(
            user,
            body.plan_id,
            body.price_type,
            origin=request.headers.get("origin"),
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
