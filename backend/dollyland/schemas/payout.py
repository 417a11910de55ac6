"""
提现相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List


class EarningsSummary(BaseModel):
    """收益汇总（美分）"""
    total_earned_cents: int
    pending_payout_cents: int
    requested_cents: int = 0  # 审核中的提现申请
    available_cents: int = 0


class PayoutCreate(BaseModel):
    """提现申请"""
    amount_cents: int = Field(..., gt=0)


class PayoutCreateResponse(BaseModel):
    """提现申请结果"""
    success: bool
    payout_id: int
    message: str


class PayoutResponse(BaseModel):
    id: int
    amount_cents: int
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class PayoutListResponse(BaseModel):
    payouts: List[PayoutResponse]
    total: int
