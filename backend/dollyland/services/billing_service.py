"""
计费服务：套餐、订阅状态同步（Stripe）、结账会话
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.models.plan import SubscriptionPlan
from dollyland.models.subscription import UserSubscription
from dollyland.models.user import User
from dollyland.schemas.billing import CheckoutResponse, PlanSummary, SubscriptionStatusResponse
from dollyland.services.stripe_client import StripeClient

logger = logging.getLogger(__name__)

STARTER_PLAN_NAME = "Starter"
PRO_PLAN_NAME = "Pro"

DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "name": "Free",
        "description": "免费体验",
        "price_monthly": 0,
        "price_yearly": 0,
        "features": [f"每月 {settings.FREE_PLAN_CONVERSATION_LIMIT} 次对话", "创建智能体", "知识库上传"],
        "conversation_limit": settings.FREE_PLAN_CONVERSATION_LIMIT,
    },
    {
        "name": STARTER_PLAN_NAME,
        "description": "个人创作者",
        "price_monthly": 799,
        "price_yearly": 7990,
        "features": ["每月 500 次对话", "实时语音", "GitHub / Linear 集成"],
        "conversation_limit": 500,
    },
    {
        "name": PRO_PLAN_NAME,
        "description": "专业团队",
        "price_monthly": 1999,
        "price_yearly": 19990,
        "features": ["不限对话次数", "Webhook", "优先支持"],
        "conversation_limit": None,
    },
]


def plan_name_for_amount(unit_amount: Optional[int]) -> str:
    """按 Stripe 价格（美分）映射套餐名"""
    amount = unit_amount or 0
    if amount <= settings.STRIPE_STARTER_MAX_AMOUNT:
        return STARTER_PLAN_NAME
    if amount >= settings.STRIPE_PRO_MIN_AMOUNT:
        return PRO_PLAN_NAME
    return STARTER_PLAN_NAME


def _from_timestamp(ts: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts else None


def _summary(plan: SubscriptionPlan) -> PlanSummary:
    return PlanSummary(name=plan.name, features=plan.features or [], conversation_limit=plan.conversation_limit)


async def seed_default_plans(db: AsyncSession) -> int:
    """写入缺失的默认套餐，返回新增数量"""
    existing = set((await db.execute(select(SubscriptionPlan.name))).scalars().all())
    added = 0
    for data in DEFAULT_PLANS:
        if data["name"] in existing:
            continue
        db.add(SubscriptionPlan(**data))
        added += 1
    if added:
        await db.commit()
        logger.info("已写入 %s 个默认套餐", added)
    return added


class BillingService:
    """计费服务类"""

    def __init__(self, db: AsyncSession, stripe: Optional[StripeClient] = None):
        self.db = db
        self._stripe = stripe

    @property
    def stripe(self) -> StripeClient:
        if self._stripe is None:
            self._stripe = StripeClient()
        return self._stripe

    async def get_plans(self) -> List[SubscriptionPlan]:
        result = await self.db.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.price_monthly, SubscriptionPlan.id)
        )
        return list(result.scalars().all())

    async def get_plan(self, plan_id: int) -> Optional[SubscriptionPlan]:
        result = await self.db.execute(
            select(SubscriptionPlan).where(SubscriptionPlan.id == plan_id, SubscriptionPlan.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def get_plan_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        result = await self.db.execute(select(SubscriptionPlan).where(SubscriptionPlan.name == name))
        return result.scalar_one_or_none()

    async def get_user_subscription(self, user_id: int) -> Optional[UserSubscription]:
        result = await self.db.execute(select(UserSubscription).where(UserSubscription.user_id == user_id))
        return result.scalar_one_or_none()

    async def upsert_subscription(self, user_id: int, plan: SubscriptionPlan, **fields: Any) -> UserSubscription:
        """每个用户仅一条订阅记录，存在则覆盖"""
        sub = await self.get_user_subscription(user_id)
        if sub is None:
            sub = UserSubscription(user_id=user_id, plan_id=plan.id)
            self.db.add(sub)
        sub.plan_id = plan.id
        for key, value in fields.items():
            setattr(sub, key, value)
        await self.db.commit()
        await self.db.refresh(sub)
        return sub

    async def upsert_free_subscription(self, user_id: int, customer_id: Optional[str] = None) -> SubscriptionPlan:
        plan = await self.get_plan_by_name(settings.FREE_PLAN_NAME)
        if plan is None:
            raise LookupError("免费套餐不存在")
        now = datetime.now(timezone.utc)
        await self.upsert_subscription(
            user_id,
            plan,
            stripe_customer_id=customer_id,
            stripe_subscription_id=None,
            status="active",
            current_period_start=now,
            current_period_end=now + timedelta(days=settings.FREE_PLAN_PERIOD_DAYS),
            cancel_at_period_end=False,
        )
        return plan

    async def check_subscription(self, user: User) -> SubscriptionStatusResponse:
        """以 Stripe 为准同步用户订阅状态"""
        customer = await self.stripe.find_customer_by_email(user.email)
        if not customer:
            plan = await self.upsert_free_subscription(user.id)
            return SubscriptionStatusResponse(subscribed=False, plan=_summary(plan))

        stripe_sub = await self.stripe.get_active_subscription(customer["id"])
        if stripe_sub:
            items = (stripe_sub.get("items") or {}).get("data") or []
            unit_amount = ((items[0].get("price") or {}).get("unit_amount")) if items else None
            plan = await self.get_plan_by_name(plan_name_for_amount(unit_amount))
            if plan is None:
                raise LookupError("套餐不存在")
            period_end = _from_timestamp(stripe_sub.get("current_period_end"))
            await self.upsert_subscription(
                user.id,
                plan,
                stripe_customer_id=customer["id"],
                stripe_subscription_id=stripe_sub.get("id"),
                status="active",
                current_period_start=_from_timestamp(stripe_sub.get("current_period_start")),
                current_period_end=period_end,
                cancel_at_period_end=bool(stripe_sub.get("cancel_at_period_end")),
            )
            logger.info("用户 %s 订阅同步为 %s", user.id, plan.name)
            return SubscriptionStatusResponse(subscribed=True, plan=_summary(plan), subscription_end=period_end)

        plan = await self.upsert_free_subscription(user.id, customer["id"])
        return SubscriptionStatusResponse(subscribed=False, plan=_summary(plan))

    async def create_checkout(
        self,
        user: User,
        plan_id: int,
        price_type: str = "monthly",
        origin: Optional[str] = None,
    ) -> CheckoutResponse:
        plan = await self.get_plan(plan_id)
        if not plan:
            raise LookupError("套餐不存在")
        customer = await self.stripe.get_or_create_customer(user.email, user.id)

        if plan.price_monthly == 0:
            await self.upsert_free_subscription(user.id, customer["id"])
            return CheckoutResponse(success=True, message="已切换到免费套餐")

        yearly = price_type == "yearly"
        unit_amount = plan.price_yearly if yearly and plan.price_yearly else plan.price_monthly
        base = (origin or settings.FRONTEND_URL).rstrip("/")
        session = await self.stripe.create_checkout_session({
            "customer": customer["id"],
            "mode": "subscription",
            "line_items": [{
                "price_data": {
                    "currency": settings.STRIPE_CURRENCY,
                    "product_data": {"name": f"{plan.name} Plan", "description": plan.description},
                    "unit_amount": unit_amount,
                    "recurring": {"interval": "year" if yearly else "month"},
                },
                "quantity": 1,
            }],
            "success_url": f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base}/pricing",
            "metadata": {"user_id": user.id, "plan_id": plan.id, "price_type": price_type},
        })
        logger.info("用户 %s 创建结账会话 plan=%s type=%s", user.id, plan.name, price_type)
        return CheckoutResponse(url=session.get("url"))
