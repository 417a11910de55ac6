"""
智能体与 AI 服务商 Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Literal

ProviderName = Literal["openai", "deepseek", "anthropic"]


class AIProviderCreate(BaseModel):
    """新增 AI 服务商"""
    provider_name: ProviderName
    model_name: Optional[str] = None  # 为空使用该服务商默认模型
    api_key: str = Field(..., min_length=8)
    is_default: bool = False


class AIProviderUpdate(BaseModel):
    """更新 AI 服务商（仅更新传入字段）"""
    model_name: Optional[str] = None
    api_key: Optional[str] = Field(None, min_length=8)
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None


class AIProviderResponse(BaseModel):
    """AI 服务商响应（不返回 API Key 明文）"""
    id: int
    provider_name: str
    model_name: str
    api_key_hint: Optional[str] = None
    is_default: bool
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AgentCreate(BaseModel):
    """智能体创建"""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    ai_provider_id: Optional[int] = None
    is_public: bool = False
    category: Optional[str] = None
    tags: List[str] = []


class AgentUpdate(BaseModel):
    """智能体更新（仅更新传入字段）"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    ai_provider_id: Optional[int] = None
    is_public: Optional[bool] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None


class AgentResponse(BaseModel):
    """智能体响应"""
    id: int
    user_id: int
    name: str
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    ai_provider_id: Optional[int] = None
    is_public: bool
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    user_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AgentListResponse(BaseModel):
    """智能体列表响应"""
    agents: List[AgentResponse]
    total: int
    page: int
    page_size: int
