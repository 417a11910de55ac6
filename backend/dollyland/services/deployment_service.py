"""
智能体开放 API：部署（发放 API Key）、调用方鉴权、消息校验、单轮对话
"""
import hashlib
import logging
import re
import secrets
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.core.crypto import mask_secret
from dollyland.models.agent import Agent
from dollyland.models.deployment import AgentDeployment
from dollyland.schemas.agent_api import DeploymentCreate
from dollyland.services.agent_service import AgentService
from dollyland.services.chat_service import ChatService, build_system_prompt
from dollyland.services.llm_service import stream_chat
from dollyland.services.provider_service import ProviderService

logger = logging.getLogger(__name__)

API_KEY_DOCUMENTATION = "请求头 x-agent-api-key 携带 API Key，POST JSON {message, conversation_id?, context?}"

# 常见的提示词注入与脚本片段
_BLOCKED_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore.*(previous|above|system|instructions)",
        r"forget.*(instructions|prompt|context)",
        r"you.*(are|must).*(now|instead|actually)",
        r"override.*system",
        r"jailbreak",
        r"roleplay.*admin",
        r"<script|javascript:|eval\(",
        r"document\.cookie|localStorage|sessionStorage",
        r"\bexec\b|\bsudo\b|rm -rf|drop table",
    )
]


def generate_api_key(agent_id: int) -> str:
    return f"agent_{agent_id}_{secrets.token_urlsafe(24)}"


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def validate_message(message: str) -> None:
    """空消息、超长消息、疑似注入均抛 ValueError"""
    if not message or not message.strip():
        raise ValueError("消息不能为空")
    limit = settings.AGENT_API_MESSAGE_MAX_LENGTH
    if len(message) > limit:
        raise ValueError(f"消息长度不能超过 {limit} 个字符")
    for pattern in _BLOCKED_PATTERNS:
        if pattern.search(message):
            raise ValueError("消息包含可能有害的内容")


class DeploymentService:
    """开放 API 部署服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_deployment(self, data: DeploymentCreate, user_id: int) -> Tuple[AgentDeployment, str]:
        """为自己的智能体创建部署，返回 (部署, API Key 明文)"""
        agent = await AgentService(self.db).get_own_agent(data.agent_id, user_id)
        if not agent:
            raise LookupError("智能体不存在")
        api_key = generate_api_key(agent.id)
        deployment = AgentDeployment(
            agent_id=agent.id,
            user_id=user_id,
            deployment_type="api",
            api_key_hash=hash_api_key(api_key),
            api_key_hint=mask_secret(api_key),
            status="active",
            max_requests_per_hour=data.max_requests_per_hour or settings.AGENT_API_MAX_REQUESTS_PER_HOUR,
            usage_count=0,
        )
        self.db.add(deployment)
        await self.db.commit()
        await self.db.refresh(deployment)
        logger.info("用户 %s 为智能体 %s 创建 API 部署 %s", user_id, agent.id, deployment.id)
        return deployment, api_key

    async def list_deployments(self, user_id: int) -> List[AgentDeployment]:
        result = await self.db.execute(
            select(AgentDeployment)
            .where(AgentDeployment.user_id == user_id)
            .order_by(AgentDeployment.created_at.desc(), AgentDeployment.id.desc())
        )
        return list(result.scalars().all())

    async def revoke(self, deployment_id: int, user_id: int) -> AgentDeployment:
        result = await self.db.execute(
            select(AgentDeployment).where(AgentDeployment.id == deployment_id, AgentDeployment.user_id == user_id)
        )
        deployment = result.scalar_one_or_none()
        if not deployment:
            raise LookupError("部署不存在")
        deployment.status = "revoked"
        await self.db.commit()
        await self.db.refresh(deployment)
        return deployment

    async def authenticate(self, agent_id: int, api_key: str) -> Optional[Tuple[AgentDeployment, Agent]]:
        """Key 对应该智能体的有效部署时返回 (部署, 智能体)"""
        result = await self.db.execute(
            select(AgentDeployment, Agent)
            .join(Agent, Agent.id == AgentDeployment.agent_id)
            .where(
                AgentDeployment.api_key_hash == hash_api_key(api_key),
                AgentDeployment.agent_id == agent_id,
                AgentDeployment.status == "active",
                Agent.user_id == AgentDeployment.user_id,
            )
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def record_request(self, deployment: AgentDeployment) -> None:
        deployment.usage_count = (deployment.usage_count or 0) + 1
        deployment.last_used_at = datetime.now(timezone.utc)
        await self.db.commit()

    async def answer(self, deployment: AgentDeployment, agent: Agent, message: str) -> str:
        """单轮对话：部署所有者的服务商 + 智能体知识，不落库会话"""
        provider_name, model_name, api_key = await ProviderService(self.db).resolve_for_chat(agent, deployment.user_id)
        knowledge = await ChatService(self.db).load_knowledge(agent.id, settings.AGENT_API_KNOWLEDGE_CHUNK_LIMIT)
        system_prompt = build_system_prompt(agent, knowledge)
        parts = [
            delta async for delta in stream_chat(
                provider_name, api_key, model_name, system_prompt, [{"role": "user", "content": message}]
            )
        ]
        return "".join(parts)
