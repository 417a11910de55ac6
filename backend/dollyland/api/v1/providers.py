"""
AI 服务商配置API
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.schemas.agent import AIProviderCreate, AIProviderUpdate, AIProviderResponse
from dollyland.schemas.auth import UserResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.provider_service import ProviderService

router = APIRouter()


@router.post("", response_model=AIProviderResponse, status_code=status.HTTP_201_CREATED)
async def create_provider(
    body: AIProviderCreate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """新增服务商（API Key 加密存储，仅返回末 4 位）"""
    return await ProviderService(db).create_provider(body, current_user.id)


@router.get("", response_model=List[AIProviderResponse])
async def list_providers(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    return await ProviderService(db).list_providers(current_user.id)


@router.patch("/{provider_id}", response_model=AIProviderResponse)
async def update_provider(
    provider_id: int,
    body: AIProviderUpdate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    provider = await ProviderService(db).update_provider(provider_id, body, current_user.id)
    if not provider:
        raise HTTPException(status_code=404, detail="AI 服务商不存在")
    return provider


@router.delete("/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_provider(
    provider_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """删除服务商，引用它的智能体改为使用默认服务商"""
    if not await ProviderService(db).delete_provider(provider_id, current_user.id):
        raise HTTPException(status_code=404, detail="AI 服务商不存在")
