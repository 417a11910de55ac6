"""
智能体服务
"""
from typing import List, Optional, Tuple

from sqlalchemy import select, func, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.models.agent import Agent, AIProvider
from dollyland.models.conversation import Conversation, Message
from dollyland.models.knowledge_base import KnowledgeBase
from dollyland.models.file import KnowledgeFile
from dollyland.models.chunk import KnowledgeChunk
from dollyland.models.webhook import Webhook, WebhookDelivery
from dollyland.models.deployment import AgentDeployment
from dollyland.schemas.agent import AgentCreate, AgentUpdate


class AgentService:
    """智能体服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _check_provider(self, provider_id: Optional[int], user_id: int) -> None:
        if provider_id is None:
            return
        result = await self.db.execute(
            select(AIProvider.id).where(AIProvider.id == provider_id, AIProvider.user_id == user_id)
        )
        if result.scalar_one_or_none() is None:
            raise ValueError("AI 服务商不存在")

    async def create_agent(self, data: AgentCreate, user_id: int) -> Agent:
        await self._check_provider(data.ai_provider_id, user_id)
        agent = Agent(
            user_id=user_id,
            name=data.name,
            description=data.description,
            system_prompt=data.system_prompt,
            ai_provider_id=data.ai_provider_id,
            is_public=data.is_public,
            category=data.category,
            tags=data.tags or [],
        )
        self.db.add(agent)
        await self.db.commit()
        await self.db.refresh(agent)
        return agent

    async def get_own_agent(self, agent_id: int, user_id: int) -> Optional[Agent]:
        """仅所有者可见（修改、删除用）"""
        result = await self.db.execute(
            select(Agent).where(Agent.id == agent_id, Agent.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_accessible_agent(self, agent_id: int, user_id: int) -> Optional[Agent]:
        """所有者或公开智能体可见（对话、实时语音用）"""
        result = await self.db.execute(
            select(Agent).where(
                Agent.id == agent_id,
                or_(Agent.user_id == user_id, Agent.is_public.is_(True)),
            )
        )
        return result.scalar_one_or_none()

    async def list_agents(
        self,
        user_id: int,
        public: bool = False,
        page: int = 1,
        page_size: int = 20,
        category: Optional[str] = None,
    ) -> Tuple[List[Agent], int]:
        """我的智能体，或 public=True 时的市场列表"""
        cond = [Agent.is_public.is_(True)] if public else [Agent.user_id == user_id]
        if category:
            cond.append(Agent.category == category)
        total = (await self.db.execute(
            select(func.count()).select_from(Agent).where(*cond)
        )).scalar() or 0
        result = await self.db.execute(
            select(Agent)
            .where(*cond)
            .order_by(Agent.created_at.desc(), Agent.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def list_popular_public(self, limit: int = 100) -> List[Agent]:
        """开放 API 的公开智能体列表：按对话用户数降序"""
        result = await self.db.execute(
            select(Agent)
            .where(Agent.is_public.is_(True))
            .order_by(Agent.user_count.desc(), Agent.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_agent(self, agent_id: int, data: AgentUpdate, user_id: int) -> Optional[Agent]:
        agent = await self.get_own_agent(agent_id, user_id)
        if not agent:
            return None
        fields = data.model_dump(exclude_unset=True)
        if "ai_provider_id" in fields:
            await self._check_provider(fields["ai_provider_id"], user_id)
        for key, value in fields.items():
            setattr(agent, key, value)
        await self.db.commit()
        await self.db.refresh(agent)
        return agent

    async def delete_agent(self, agent_id: int, user_id: int) -> List[str]:
        """删除智能体及其知识库、对话、Webhook、API 部署；返回需从对象存储删除的文件路径"""
        agent = await self.get_own_agent(agent_id, user_id)
        if not agent:
            raise LookupError("智能体不存在")
        kb_ids = select(KnowledgeBase.id).where(KnowledgeBase.agent_id == agent_id)
        paths = (await self.db.execute(
            select(KnowledgeFile.file_path).where(
                KnowledgeFile.knowledge_base_id.in_(kb_ids),
                KnowledgeFile.file_path.is_not(None),
            )
        )).scalars().all()
        conv_ids = select(Conversation.id).where(Conversation.agent_id == agent_id)
        webhook_ids = select(Webhook.id).where(Webhook.agent_id == agent_id)
        # 显式按依赖顺序删除，不依赖数据库级联
        await self.db.execute(delete(KnowledgeChunk).where(KnowledgeChunk.knowledge_base_id.in_(kb_ids)))
        await self.db.execute(delete(KnowledgeFile).where(KnowledgeFile.knowledge_base_id.in_(kb_ids)))
        await self.db.execute(delete(KnowledgeBase).where(KnowledgeBase.agent_id == agent_id))
        await self.db.execute(delete(Message).where(Message.conversation_id.in_(conv_ids)))
        await self.db.execute(delete(Conversation).where(Conversation.agent_id == agent_id))
        await self.db.execute(delete(WebhookDelivery).where(WebhookDelivery.webhook_id.in_(webhook_ids)))
        await self.db.execute(delete(Webhook).where(Webhook.agent_id == agent_id))
        await self.db.execute(delete(AgentDeployment).where(AgentDeployment.agent_id == agent_id))
        await self.db.delete(agent)
        await self.db.commit()
        return list(paths)
