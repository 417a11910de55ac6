"""
套餐模型
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dollyland.core.database import Base


class SubscriptionPlan(Base):
    """套餐表（价格单位：美分）"""
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    price_monthly = Column(Integer, nullable=False, default=0)
    price_yearly = Column(Integer, nullable=True)
    features = Column(JSON, nullable=True)  # ["无限对话", "优先支持", ...]
    conversation_limit = Column(Integer, nullable=True)  # 为空表示不限
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    subscriptions = relationship("UserSubscription", back_populates="plan")
