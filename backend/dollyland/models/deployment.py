"""
智能体开放 API 部署模型
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from dollyland.core.database import Base


class AgentDeployment(Base):
    """智能体 API 部署：外部调用方凭 x-agent-api-key 访问（只存 Key 的哈希）"""
    __tablename__ = "agent_deployments"

    id = Column(Integer, primary_key=True, index=True)
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    deployment_type = Column(String(20), nullable=False, default="api")
    api_key_hash = Column(String(64), nullable=False, unique=True, index=True)
    api_key_hint = Column(String(16), nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active, revoked
    max_requests_per_hour = Column(Integer, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
