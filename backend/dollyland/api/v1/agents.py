"""
智能体API
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.core.config import settings
from dollyland.schemas.agent import AgentCreate, AgentUpdate, AgentResponse, AgentListResponse
from dollyland.schemas.auth import UserResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.api.deps import get_client_ip, get_request_id
from dollyland.services.agent_service import AgentService
from dollyland.services.file_service import remove_objects_quietly
from dollyland.services.audit_service import log_audit
from dollyland.services import cache_service


router = APIRouter()


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    request: Request,
    body: AgentCreate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """创建智能体"""
    try:
        agent = await AgentService(db).create_agent(body, current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await log_audit(
        db, current_user.id, "create_agent", "agent", agent.id,
        {"name": agent.name}, get_client_ip(request), get_request_id(request),
        request.headers.get("user-agent"),
    )
    if agent.is_public:
        await asyncio.to_thread(cache_service.delete_by_prefix, cache_service.prefix_public_agents())
    return agent


@router.get("", response_model=AgentListResponse)
async def list_agents(
    public: bool = False,
    category: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """我的智能体；public=true 时为公开市场（无分类筛选时带缓存）"""
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)
    cache_key = cache_service.key_public_agents(page, page_size) if public and not category else None
    if cache_key:
        cached = await asyncio.to_thread(cache_service.get, cache_key)
        if cached is not None:
            return AgentListResponse(**cached)
    agents, total = await AgentService(db).list_agents(
        current_user.id, public=public, page=page, page_size=page_size, category=category
    )
    out = AgentListResponse(
        agents=[AgentResponse.model_validate(a) for a in agents],
        total=total,
        page=page,
        page_size=page_size,
    )
    if cache_key:
        await asyncio.to_thread(cache_service.set, cache_key, out.model_dump(mode="json"), settings.CACHE_TTL_LIST)
    return out


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(
    agent_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    agent = await AgentService(db).get_accessible_agent(agent_id, current_user.id)
    if not agent:
        raise HTTPException(status_code=404, detail="智能体不存在")
    return agent


@router.patch("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: int,
    body: AgentUpdate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """更新智能体（仅所有者）"""
    try:
        agent = await AgentService(db).update_agent(agent_id, body, current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not agent:
        raise HTTPException(status_code=404, detail="智能体不存在")
    await asyncio.to_thread(cache_service.delete_by_prefix, cache_service.prefix_public_agents())
    return agent


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(
    request: Request,
    agent_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """删除智能体，连带其知识库、对话与 Webhook"""
    try:
        paths = await AgentService(db).delete_agent(agent_id, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if paths:
        await asyncio.to_thread(remove_objects_quietly, paths)
    await log_audit(
        db, current_user.id, "delete_agent", "agent", agent_id,
        {"files_removed": len(paths)}, get_client_ip(request), get_request_id(request),
        request.headers.get("user-agent"),
    )
    await asyncio.to_thread(cache_service.delete_by_prefix, cache_service.prefix_public_agents())
    await asyncio.to_thread(cache_service.delete_by_prefix, cache_service.prefix_user_conv_list(current_user.id))
