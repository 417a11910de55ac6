"""
创作者收益与提现服务
"""
import logging
from typing import List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.models.payout import CreatorEarning, PayoutRequest
from dollyland.schemas.payout import EarningsSummary

logger = logging.getLogger(__name__)

PAYOUT_SUBMITTED_MESSAGE = "提现申请已提交，预计 2-5 个工作日内处理"

# 尚未结清的提现申请，金额从可提现余额中扣除
OPEN_PAYOUT_STATUSES = ("pending", "processing")


class PayoutService:
    """提现服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _requested_cents(self, user_id: int) -> int:
        total = (await self.db.execute(
            select(func.coalesce(func.sum(PayoutRequest.amount_cents), 0)).where(
                PayoutRequest.creator_id == user_id,
                PayoutRequest.status.in_(OPEN_PAYOUT_STATUSES),
            )
        )).scalar()
        return int(total or 0)

    async def get_earnings(self, user_id: int) -> EarningsSummary:
        row = (await self.db.execute(
            select(
                func.coalesce(func.sum(CreatorEarning.amount_cents), 0),
                func.coalesce(func.sum(CreatorEarning.pending_payout_cents), 0),
            ).where(CreatorEarning.creator_id == user_id)
        )).one()
        pending = int(row[1])
        requested = await self._requested_cents(user_id)
        return EarningsSummary(
            total_earned_cents=int(row[0]),
            pending_payout_cents=pending,
            requested_cents=requested,
            available_cents=max(pending - requested, 0),
        )

    async def request_payout(self, user_id: int, amount_cents: int) -> PayoutRequest:
        """可提现余额 = 待提现收益 - 未结清的提现申请"""
        if amount_cents < settings.PAYOUT_MIN_CENTS:
            raise ValueError(f"最低提现金额为 ${settings.PAYOUT_MIN_CENTS / 100:.2f}")
        # 锁住该创作者的收益行，并发申请串行化（sqlite 下忽略）
        await self.db.execute(
            select(CreatorEarning.id).where(CreatorEarning.creator_id == user_id).with_for_update()
        )
        earnings = await self.get_earnings(user_id)
        if amount_cents > earnings.available_cents:
            await self.db.rollback()
            raise ValueError("待提现收益不足")
        payout = PayoutRequest(creator_id=user_id, amount_cents=amount_cents, status="pending")
        self.db.add(payout)
        await self.db.commit()
        await self.db.refresh(payout)
        logger.info("用户 %s 提交提现 %s 美分（可提现 %s）", user_id, amount_cents, earnings.available_cents)
        return payout

    async def list_payouts(self, user_id: int, page: int = 1, page_size: int = 20) -> Tuple[List[PayoutRequest], int]:
        total = (await self.db.execute(
            select(func.count()).select_from(PayoutRequest).where(PayoutRequest.creator_id == user_id)
        )).scalar() or 0
        result = await self.db.execute(
            select(PayoutRequest)
            .where(PayoutRequest.creator_id == user_id)
            .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total
