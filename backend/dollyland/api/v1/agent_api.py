"""
开放 API：公开智能体列表、部署管理（需登录）、外部调用方凭 x-agent-api-key 对话
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.core.database import get_db
from dollyland.schemas.auth import UserResponse
from dollyland.schemas.agent_api import (
    PublicAgent,
    PublicAgentListResponse,
    DeploymentCreate,
    DeploymentCreateResponse,
    DeploymentResponse,
    DeploymentListResponse,
    AgentApiChatRequest,
    AgentApiChatResponse,
    AgentApiChatData,
    AgentApiUsage,
)
from dollyland.api.deps import get_client_ip, get_request_id
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.agent_service import AgentService
from dollyland.services.audit_service import log_audit
from dollyland.services.deployment_service import DeploymentService, API_KEY_DOCUMENTATION, validate_message
from dollyland.services.rate_limit_service import check_and_incr_deployment

router = APIRouter()


@router.get("/agents", response_model=PublicAgentListResponse)
async def list_public_agents(db: AsyncSession = Depends(get_db)):
    """公开智能体，按对话用户数降序（无需登录）"""
    agents = await AgentService(db).list_popular_public()
    return PublicAgentListResponse(data=[PublicAgent.model_validate(a) for a in agents])


@router.post("/agents/{agent_id}/chat", response_model=AgentApiChatResponse)
async def agent_api_chat(
    agent_id: int,
    body: AgentApiChatRequest,
    request: Request,
    x_agent_api_key: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    if not x_agent_api_key:
        raise HTTPException(status_code=401, detail="缺少 API Key")
    if len(x_agent_api_key) < settings.AGENT_API_KEY_MIN_LENGTH:
        raise HTTPException(status_code=401, detail="API Key 格式无效")

    service = DeploymentService(db)
    found = await service.authenticate(agent_id, x_agent_api_key)
    if not found:
        raise HTTPException(status_code=403, detail="API Key 无效或智能体不可访问")
    deployment, agent = found

    try:
        validate_message(body.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    allowed, _, _ = check_and_incr_deployment(deployment.id, deployment.max_requests_per_hour)
    if not allowed:
        raise HTTPException(status_code=429, detail="请求过于频繁，请稍后再试")

    await service.record_request(deployment)
    await log_audit(
        db, deployment.user_id, "agent_api_request", "agent", agent.id,
        {
            "deployment_id": deployment.id,
            "message_length": len(body.message),
            "has_context": bool(body.context),
        },
        get_client_ip(request), get_request_id(request), request.headers.get("user-agent"),
    )

    try:
        reply = await service.answer(deployment, agent, body.message)
    except ValueError as e:
        # 部署所有者未配置可用的服务商
        raise HTTPException(status_code=500, detail=str(e))

    return AgentApiChatResponse(
        data=AgentApiChatData(
            message=reply,
            agent_id=agent.id,
            conversation_id=body.conversation_id,
            usage=AgentApiUsage(requests_used=deployment.usage_count),
        )
    )


@router.post("/deployments", response_model=DeploymentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_deployment(
    body: DeploymentCreate,
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """为自己的智能体生成 API Key；明文只返回这一次"""
    try:
        deployment, api_key = await DeploymentService(db).create_deployment(body, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await log_audit(
        db, current_user.id, "create_deployment", "agent", deployment.agent_id,
        {"deployment_id": deployment.id}, get_client_ip(request), get_request_id(request),
        request.headers.get("user-agent"),
    )
    return DeploymentCreateResponse(
        deployment_id=deployment.id,
        api_key=api_key,
        endpoint=f"{settings.API_V1_STR}/agent-api/agents/{deployment.agent_id}/chat",
        documentation=API_KEY_DOCUMENTATION,
    )


@router.get("/deployments", response_model=DeploymentListResponse)
async def list_deployments(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    deployments = await DeploymentService(db).list_deployments(current_user.id)
    return DeploymentListResponse(
        deployments=[DeploymentResponse.model_validate(d) for d in deployments],
        total=len(deployments),
    )


@router.delete("/deployments/{deployment_id}", response_model=DeploymentResponse)
async def revoke_deployment(
    deployment_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """吊销部署，之后该 Key 的请求返回 403"""
    try:
        deployment = await DeploymentService(db).revoke(deployment_id, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return DeploymentResponse.model_validate(deployment)
