"""
实时语音 WebSocket：鉴权后中转到 OpenAI Realtime
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketState
from websockets.exceptions import WebSocketException

from dollyland.core.config import settings
from dollyland.core.database import get_db
from dollyland.models.agent import Agent
from dollyland.services.auth_service import AuthService
from dollyland.services.realtime_service import RealtimeRelay, instructions_for

logger = logging.getLogger(__name__)

router = APIRouter()


async def _close(websocket: WebSocket, code: int, reason: str) -> None:
    logger.info("实时连接关闭 code=%s reason=%s", code, reason)
    await websocket.close(code=code, reason=reason)


@router.websocket("")
async def realtime_relay(
    websocket: WebSocket,
    agent_id: Optional[int] = None,
    token: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """JWT 走 token 查询参数；鉴权失败 1008，智能体不存在 1011"""
    await websocket.accept()
    if not token:
        return await _close(websocket, status.WS_1008_POLICY_VIOLATION, "缺少认证令牌")
    try:
        user = await AuthService(db).get_current_user(token)
    except ValueError:
        return await _close(websocket, status.WS_1008_POLICY_VIOLATION, "无效的认证凭据")

    agent = await db.get(Agent, agent_id) if agent_id else None
    if agent is None:
        return await _close(websocket, status.WS_1011_INTERNAL_ERROR, "智能体不存在")
    if agent.user_id != user.id and not agent.is_public:
        return await _close(websocket, status.WS_1008_POLICY_VIOLATION, "无权访问该智能体")
    if not settings.OPENAI_API_KEY:
        return await _close(websocket, status.WS_1008_POLICY_VIOLATION, "OPENAI_API_KEY 未配置")

    relay = RealtimeRelay(websocket, instructions_for(agent))
    try:
        await relay.run()
    except (OSError, WebSocketException) as e:
        logger.error("连接 OpenAI Realtime 失败 agent_id=%s: %s", agent.id, e)
        if websocket.client_state == WebSocketState.CONNECTED:
            return await _close(websocket, status.WS_1011_INTERNAL_ERROR, "上游连接失败")
        return
    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close()
