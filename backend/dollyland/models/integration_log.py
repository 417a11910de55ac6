"""
第三方集成调用日志：GitHub、Linear 等
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from dollyland.core.database import Base


class IntegrationLog(Base):
    """集成调用日志表"""
    __tablename__ = "integration_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    integration_type = Column(String(32), nullable=False, index=True)  # github, linear
    action = Column(String(64), nullable=False)
    success = Column(Boolean, default=True)
    log_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
