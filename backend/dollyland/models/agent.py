"""
智能体与 AI 服务商模型
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dollyland.core.database import Base


class AIProvider(Base):
    """用户配置的 AI 服务商（API Key 加密存储）"""
    __tablename__ = "user_ai_providers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_name = Column(String(20), nullable=False)  # openai, deepseek, anthropic
    model_name = Column(String(100), nullable=False)
    api_key_encrypted = Column(Text, nullable=False)
    api_key_hint = Column(String(16), nullable=True)  # 末 4 位，仅用于展示
    is_default = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    user = relationship("User", back_populates="ai_providers")


class Agent(Base):
    """智能体表"""
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    system_prompt = Column(Text, nullable=True)
    ai_provider_id = Column(Integer, ForeignKey("user_ai_providers.id", ondelete="SET NULL"), nullable=True)
    is_public = Column(Boolean, default=False, index=True)
    category = Column(String(50), nullable=True)
    tags = Column(JSON, nullable=True)  # ["写作", "客服"]
    user_count = Column(Integer, nullable=False, default=0, server_default="0")  # 与之对话过的用户数
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    owner = relationship("User", back_populates="agents")
    ai_provider = relationship("AIProvider")
