"""
创作者收益与提现模型
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from dollyland.core.database import Base


class CreatorEarning(Base):
    """创作者收益表（金额单位：美分）"""
    __tablename__ = "creator_earnings"

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    pending_payout_cents = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PayoutRequest(Base):
    """提现申请表"""
    __tablename__ = "payout_requests"

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    status = Column(String(20), default="pending")  # pending, processing, paid, rejected
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
