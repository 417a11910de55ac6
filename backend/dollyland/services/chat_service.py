"""
问答服务：智能体对话中转（上游 LLM 流式输出 → 持久化 → 推送给客户端）
"""
import logging
from datetime import datetime, timezone
from typing import Optional, AsyncGenerator, List, Any, Dict, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete, update
from sqlalchemy.orm import selectinload

from dollyland.core.config import settings
from dollyland.models.agent import Agent
from dollyland.models.conversation import Conversation, Message
from dollyland.models.knowledge_base import KnowledgeBase
from dollyland.models.chunk import KnowledgeChunk
from dollyland.schemas.chat import ChatResponse, ConversationResponse, ConversationListResponse, MessageResponse
from dollyland.services.llm_service import stream_chat

logger = logging.getLogger(__name__)

KNOWLEDGE_HEADER = "\n\nRelevant knowledge from your knowledge base:\n"


def make_title(message: str, max_length: Optional[int] = None) -> str:
    """会话标题：超出长度截断并加省略号"""
    n = max_length or settings.CHAT_TITLE_MAX_LENGTH
    return message[:n] + "..." if len(message) > n else message


def build_system_prompt(agent: Agent, knowledge: List[str]) -> str:
    prompt = agent.system_prompt or settings.CHAT_DEFAULT_SYSTEM_PROMPT
    if knowledge:
        prompt += KNOWLEDGE_HEADER + "\n\n".join(knowledge)
    return prompt


class ChatService:
    """问答服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_conversation(self, conv_id: int, user_id: int) -> Optional[Conversation]:
        """获取对话（含消息）"""
        result = await self.db.execute(
            select(Conversation)
            .options(selectinload(Conversation.messages))
            .where(Conversation.id == conv_id, Conversation.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def open_conversation(
        self,
        user_id: int,
        agent: Agent,
        message: str,
        conversation_id: Optional[int] = None,
    ) -> Conversation:
        """取已有对话或新建对话，写入用户消息并提交"""
        if conversation_id:
            result = await self.db.execute(
                select(Conversation).where(
                    Conversation.id == conversation_id,
                    Conversation.user_id == user_id,
                    Conversation.agent_id == agent.id,
                )
            )
            conv = result.scalar_one_or_none()
            if not conv:
                raise LookupError("对话不存在")
        else:
            await self._count_new_user(user_id, agent.id)
            conv = Conversation(user_id=user_id, agent_id=agent.id, title=make_title(message))
            self.db.add(conv)
            await self.db.flush()
        self.db.add(Message(conversation_id=conv.id, role="user", content=message))
        await self.db.commit()
        await self.db.refresh(conv)
        return conv

    async def _count_new_user(self, user_id: int, agent_id: int) -> None:
        """用户首次与该智能体对话时 user_count +1"""
        existing = await self.db.scalar(
            select(func.count(Conversation.id)).where(
                Conversation.user_id == user_id, Conversation.agent_id == agent_id
            )
        )
        if not existing:
            await self.db.execute(
                update(Agent).where(Agent.id == agent_id).values(user_count=Agent.user_count + 1)
            )

    async def load_history(self, conv_id: int, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """最近 N 条消息（按时间正序），OpenAI 消息格式"""
        n = limit or settings.CHAT_HISTORY_LIMIT
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conv_id)
            .order_by(Message.id.desc())
            .limit(n)
        )
        rows = list(result.scalars().all())
        rows.reverse()
        return [{"role": m.role, "content": m.content} for m in rows]

    async def load_knowledge(self, agent_id: int, limit: Optional[int] = None) -> List[str]:
        """智能体所属知识库中的知识块内容（按知识库、文件、块序取前 N 个）"""
        n = limit or settings.CHAT_KNOWLEDGE_CHUNK_LIMIT
        result = await self.db.execute(
            select(KnowledgeChunk.content)
            .join(KnowledgeBase, KnowledgeBase.id == KnowledgeChunk.knowledge_base_id)
            .where(KnowledgeBase.agent_id == agent_id)
            .order_by(KnowledgeChunk.knowledge_base_id, KnowledgeChunk.knowledge_file_id, KnowledgeChunk.chunk_index)
            .limit(n)
        )
        return [c for c in result.scalars().all() if c]

    async def save_assistant_message(self, conv: Conversation, content: str) -> Message:
        msg = Message(conversation_id=conv.id, role="assistant", content=content)
        self.db.add(msg)
        conv.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(msg)
        return msg

    async def chat_stream(
        self,
        user_id: int,
        agent: Agent,
        provider: Tuple[str, str, str],
        message: str,
        conversation_id: Optional[int] = None,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """
        流式对话事件：start → content* → done；上游失败时产出 error 并结束。
        provider 为 (provider_name, model_name, api_key)，由调用方预先解析。
        """
        provider_name, model_name, api_key = provider
        conv = await self.open_conversation(user_id, agent, message, conversation_id)
        yield {"type": "start", "conversation_id": conv.id}

        history = await self.load_history(conv.id)
        knowledge = await self.load_knowledge(agent.id)
        system_prompt = build_system_prompt(agent, knowledge)

        parts: List[str] = []
        try:
            async for delta in stream_chat(provider_name, api_key, model_name, system_prompt, history):
                parts.append(delta)
                yield {"type": "content", "content": delta}
        except Exception:
            logger.exception("对话上游流式输出失败 conv_id=%s provider=%s", conv.id, provider_name)
            yield {"type": "error", "error": "处理请求时发生错误"}
            return

        assistant = await self.save_assistant_message(conv, "".join(parts))
        yield {"type": "done", "conversation_id": conv.id, "message_id": assistant.id}

    async def chat(
        self,
        user_id: int,
        agent: Agent,
        provider: Tuple[str, str, str],
        message: str,
        conversation_id: Optional[int] = None,
    ) -> ChatResponse:
        """非流式对话：汇总流式结果后一次返回"""
        provider_name, model_name, api_key = provider
        conv = await self.open_conversation(user_id, agent, message, conversation_id)
        history = await self.load_history(conv.id)
        knowledge = await self.load_knowledge(agent.id)
        system_prompt = build_system_prompt(agent, knowledge)
        parts: List[str] = []
        async for delta in stream_chat(provider_name, api_key, model_name, system_prompt, history):
            parts.append(delta)
        assistant = await self.save_assistant_message(conv, "".join(parts))
        return ChatResponse(
            conversation_id=conv.id,
            message_id=assistant.id,
            message=assistant.content,
            created_at=assistant.created_at,
        )

    async def get_conversations(
        self,
        user_id: int,
        agent_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ConversationListResponse:
        """获取对话列表（不含消息）"""
        cond = [Conversation.user_id == user_id]
        if agent_id:
            cond.append(Conversation.agent_id == agent_id)
        total = (await self.db.execute(
            select(func.count()).select_from(Conversation).where(*cond)
        )).scalar() or 0
        result = await self.db.execute(
            select(Conversation)
            .where(*cond)
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        conversations = [
            ConversationResponse(
                id=c.id,
                agent_id=c.agent_id,
                title=c.title,
                created_at=c.created_at,
                updated_at=c.updated_at,
            )
            for c in result.scalars().all()
        ]
        return ConversationListResponse(
            conversations=conversations,
            total=total,
            page=page,
            page_size=page_size,
        )

    async def get_conversation_messages(self, conv_id: int, user_id: int, limit: int = 100) -> List[Message]:
        """获取对话的消息列表"""
        result = await self.db.execute(
            select(Message)
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(Message.conversation_id == conv_id, Conversation.user_id == user_id)
            .order_by(Message.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_conversation(self, conv_id: int, user_id: int) -> bool:
        """删除对话及其消息"""
        result = await self.db.execute(
            select(Conversation.id).where(Conversation.id == conv_id, Conversation.user_id == user_id)
        )
        if result.scalar_one_or_none() is None:
            return False
        await self.db.execute(delete(Message).where(Message.conversation_id == conv_id))
        await self.db.execute(delete(Conversation).where(Conversation.id == conv_id))
        await self.db.commit()
        return True

    @staticmethod
    def to_response(conv: Conversation) -> ConversationResponse:
        return ConversationResponse(
            id=conv.id,
            agent_id=conv.agent_id,
            title=conv.title,
            created_at=conv.created_at,
            updated_at=conv.updated_at,
            messages=[MessageResponse.model_validate(m) for m in conv.messages],
        )
