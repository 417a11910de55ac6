"""
开放 API Schema：公开智能体列表、部署管理、x-agent-api-key 对话
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class PublicAgent(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    user_count: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class PublicAgentListResponse(BaseModel):
    success: bool = True
    data: List[PublicAgent]


class DeploymentCreate(BaseModel):
    """创建部署；未指定上限时使用默认每小时请求数"""
    agent_id: int
    max_requests_per_hour: Optional[int] = Field(None, ge=1, le=100000)


class DeploymentCreateResponse(BaseModel):
    """api_key 只在创建时返回一次"""
    deployment_id: int
    api_key: str
    endpoint: str
    documentation: str


class DeploymentResponse(BaseModel):
    id: int
    agent_id: int
    deployment_type: str
    status: str
    api_key_hint: Optional[str] = None
    max_requests_per_hour: int
    usage_count: int
    last_used_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DeploymentListResponse(BaseModel):
    deployments: List[DeploymentResponse]
    total: int


class AgentApiChatRequest(BaseModel):
    """message 的长度与内容在服务层校验（返回 400）"""
    message: str = ""
    conversation_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class AgentApiUsage(BaseModel):
    requests_used: int


class AgentApiChatData(BaseModel):
    message: str
    agent_id: int
    conversation_id: Optional[str] = None
    usage: AgentApiUsage


class AgentApiChatResponse(BaseModel):
    success: bool = True
    data: AgentApiChatData
