"""
AI 服务商配置服务：用户自有 API Key 的增删改查与对话时的服务商解析
"""
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.core.crypto import encrypt_secret, decrypt_secret, mask_secret
from dollyland.models.agent import AIProvider, Agent
from dollyland.schemas.agent import AIProviderCreate, AIProviderUpdate

SUPPORTED_PROVIDERS = ("openai", "deepseek", "anthropic")


def default_model_for(provider_name: str) -> str:
    return {
        "openai": settings.OPENAI_DEFAULT_MODEL,
        "deepseek": settings.DEEPSEEK_DEFAULT_MODEL,
        "anthropic": settings.ANTHROPIC_DEFAULT_MODEL,
    }[provider_name]


class ProviderService:
    """AI 服务商服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _clear_default(self, user_id: int, keep_id: Optional[int] = None) -> None:
        stmt = update(AIProvider).where(AIProvider.user_id == user_id, AIProvider.is_default.is_(True))
        if keep_id is not None:
            stmt = stmt.where(AIProvider.id != keep_id)
        await self.db.execute(stmt.values(is_default=False))

    async def create_provider(self, data: AIProviderCreate, user_id: int) -> AIProvider:
        """新增服务商；设为默认时取消该用户其他默认"""
        existing = await self.list_providers(user_id)
        is_default = data.is_default or not existing
        if is_default:
            await self._clear_default(user_id)
        provider = AIProvider(
            user_id=user_id,
            provider_name=data.provider_name,
            model_name=data.model_name or default_model_for(data.provider_name),
            api_key_encrypted=encrypt_secret(data.api_key),
            api_key_hint=mask_secret(data.api_key),
            is_default=is_default,
            is_active=True,
        )
        self.db.add(provider)
        await self.db.commit()
        await self.db.refresh(provider)
        return provider

    async def list_providers(self, user_id: int) -> List[AIProvider]:
        result = await self.db.execute(
            select(AIProvider).where(AIProvider.user_id == user_id).order_by(AIProvider.id)
        )
        return list(result.scalars().all())

    async def get_provider(self, provider_id: int, user_id: int) -> Optional[AIProvider]:
        result = await self.db.execute(
            select(AIProvider).where(AIProvider.id == provider_id, AIProvider.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def update_provider(self, provider_id: int, data: AIProviderUpdate, user_id: int) -> Optional[AIProvider]:
        provider = await self.get_provider(provider_id, user_id)
        if not provider:
            return None
        if data.model_name is not None:
            provider.model_name = data.model_name
        if data.api_key is not None:
            provider.api_key_encrypted = encrypt_secret(data.api_key)
            provider.api_key_hint = mask_secret(data.api_key)
        if data.is_active is not None:
            provider.is_active = data.is_active
        if data.is_default is not None:
            if data.is_default:
                await self._clear_default(user_id, keep_id=provider.id)
            provider.is_default = data.is_default
        await self.db.commit()
        await self.db.refresh(provider)
        return provider

    async def delete_provider(self, provider_id: int, user_id: int) -> bool:
        provider = await self.get_provider(provider_id, user_id)
        if not provider:
            return False
        await self.db.execute(
            update(Agent).where(Agent.ai_provider_id == provider.id).values(ai_provider_id=None)
        )
        await self.db.delete(provider)
        await self.db.commit()
        return True

    async def resolve_for_chat(self, agent: Agent, user_id: int) -> Tuple[str, str, str]:
        """
        确定本次对话使用的服务商，返回 (provider_name, model_name, api_key 明文)。
        优先智能体绑定的服务商（仅当请求者是智能体所有者且服务商启用），否则用请求者的默认服务商。
        """
        provider: Optional[AIProvider] = None
        if agent.ai_provider_id and agent.user_id == user_id:
            candidate = await self.get_provider(agent.ai_provider_id, user_id)
            if candidate and candidate.is_active:
                provider = candidate
        if provider is None:
            result = await self.db.execute(
                select(AIProvider)
                .where(AIProvider.user_id == user_id, AIProvider.is_active.is_(True))
                .order_by(AIProvider.is_default.desc(), AIProvider.id)
                .limit(1)
            )
            provider = result.scalar_one_or_none()
        if provider is None:
            raise ValueError("未配置 AI 服务商，请先在设置中添加服务商 API Key")
        if provider.provider_name not in SUPPORTED_PROVIDERS:
            raise ValueError(f"不支持的 AI 服务商: {provider.provider_name}")
        return provider.provider_name, provider.model_name, decrypt_secret(provider.api_key_encrypted)
