"""
Webhook 与投递记录模型
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from dollyland.core.database import Base


class Webhook(Base):
    """智能体事件 Webhook 表"""
    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(2000), nullable=False)
    events = Column(JSON, nullable=False)  # ["conversation.created", "message.created"]
    secret = Column(String(500), nullable=True)  # Fernet 加密存储
    headers = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class WebhookDelivery(Base):
    """Webhook 投递记录表"""
    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(Integer, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True)
    event = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=True)
    status_code = Column(Integer, default=0)
    success = Column(Boolean, default=False)
    response_body = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    is_retry = Column(Boolean, default=False)
    original_delivery_id = Column(Integer, ForeignKey("webhook_deliveries.id"), nullable=True)
    delivered_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
