"""
问答相关API：智能体对话中转（SSE 流式）与对话管理
"""
import asyncio
import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from dollyland.core.database import get_db
from dollyland.core.config import settings
from dollyland.models.agent import Agent
from dollyland.schemas.chat import ChatMessage, ChatResponse, ConversationResponse, ConversationListResponse, MessageResponse
from dollyland.schemas.auth import UserResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.api.deps import require_chat_rate_limit
from dollyland.services.agent_service import AgentService
from dollyland.services.chat_service import ChatService
from dollyland.services.provider_service import ProviderService
from dollyland.services import cache_service

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "Content-Type": "text/event-stream; charset=utf-8",
}


async def _prepare(message: ChatMessage, user_id: int, db: AsyncSession):
    """流开始前完成的校验：智能体可见、服务商可用、已有对话归属"""
    agent: Optional[Agent] = await AgentService(db).get_accessible_agent(message.agent_id, user_id)
    if not agent:
        raise HTTPException(status_code=404, detail="智能体不存在")
    try:
        provider = await ProviderService(db).resolve_for_chat(agent, user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if message.conversation_id:
        conv = await ChatService(db).get_conversation(message.conversation_id, user_id)
        if not conv or conv.agent_id != agent.id:
            raise HTTPException(status_code=404, detail="对话不存在")
    return agent, provider


@router.post("/completions", response_model=ChatResponse)
async def chat_completion(
    message: ChatMessage,
    current_user: UserResponse = Depends(require_chat_rate_limit),
    db: AsyncSession = Depends(get_db)
):
    """发送消息（非流式）"""
    agent, provider = await _prepare(message, current_user.id, db)
    try:
        response = await ChatService(db).chat(
            user_id=current_user.id,
            agent=agent,
            provider=provider,
            message=message.message,
            conversation_id=message.conversation_id,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await asyncio.to_thread(cache_service.invalidate_conversation_cache, current_user.id, response.conversation_id)
    return response


@router.post("/completions/stream")
async def chat_completion_stream(
    request: Request,
    message: ChatMessage,
    current_user: UserResponse = Depends(require_chat_rate_limit),
    db: AsyncSession = Depends(get_db)
):
    """发送消息（流式），每个增量单独推送。客户端断开时停止生成。"""
    agent, provider = await _prepare(message, current_user.id, db)
    chat_service = ChatService(db)

    async def generate():
        conv_id = message.conversation_id
        try:
            async for event in chat_service.chat_stream(
                user_id=current_user.id,
                agent=agent,
                provider=provider,
                message=message.message,
                conversation_id=message.conversation_id,
            ):
                if event.get("type") == "start":
                    conv_id = event["conversation_id"]
                if await request.is_disconnected():
                    logger.info("客户端已断开，停止生成 conv_id=%s", conv_id)
                    break
                yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
            if not await request.is_disconnected():
                yield "data: [DONE]\n\n"
        except Exception:
            logger.exception("对话流式生成异常")
            if not await request.is_disconnected():
                yield f"data: {json.dumps({'type': 'error', 'error': '处理请求时发生错误'}, ensure_ascii=False)}\n\n"
        finally:
            if conv_id:
                await asyncio.to_thread(cache_service.invalidate_conversation_cache, current_user.id, conv_id)

    return StreamingResponse(generate(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/conversations", response_model=ConversationListResponse)
async def get_conversations(
    agent_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 20,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """获取对话列表（带 Redis 缓存）"""
    user_id = current_user.id
    cache_key = cache_service.key_conv_list(user_id, agent_id, page, page_size)
    cached = await asyncio.to_thread(cache_service.get, cache_key)
    if cached is not None:
        return ConversationListResponse(**cached)
    result = await ChatService(db).get_conversations(user_id, agent_id, page, page_size)
    await asyncio.to_thread(cache_service.set, cache_key, result.model_dump(mode="json"), settings.CACHE_TTL_CONV)
    return result


@router.get("/conversations/{conv_id}", response_model=ConversationResponse)
async def get_conversation(
    conv_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """获取对话详情（含消息列表，带 Redis 缓存）"""
    cache_key = cache_service.key_conv_detail(conv_id)
    cached = await asyncio.to_thread(cache_service.get, cache_key)
    if cached is not None:
        out = ConversationResponse(**cached)
        # 缓存 key 不含用户，命中后仍需校验归属
        if await ChatService(db).get_conversation(conv_id, current_user.id):
            return out
        raise HTTPException(status_code=404, detail="对话不存在")
    conv = await ChatService(db).get_conversation(conv_id, current_user.id)
    if not conv:
        raise HTTPException(status_code=404, detail="对话不存在")
    out = ChatService.to_response(conv)
    await asyncio.to_thread(cache_service.set, cache_key, out.model_dump(mode="json"), settings.CACHE_TTL_CONV)
    return out


@router.get("/conversations/{conv_id}/messages")
async def get_conversation_messages(
    conv_id: int,
    limit: int = 100,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """获取对话的消息列表"""
    messages = await ChatService(db).get_conversation_messages(conv_id, current_user.id, limit)
    return {"messages": [MessageResponse.model_validate(m) for m in messages]}


@router.delete("/conversations/{conv_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conv_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """删除对话"""
    if not await ChatService(db).delete_conversation(conv_id, current_user.id):
        raise HTTPException(status_code=404, detail="对话不存在")
    await asyncio.to_thread(cache_service.invalidate_conversation_cache, current_user.id, conv_id)
    return None
