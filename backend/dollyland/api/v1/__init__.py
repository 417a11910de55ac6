"""
API v1 路由
"""
from fastapi import APIRouter
from dollyland.api.v1 import (
    auth,
    providers,
    agents,
    chat,
    knowledge_bases,
    tasks,
    billing,
    payouts,
    integrations,
    emails,
    invites,
    webhooks,
    realtime,
    audit,
    agent_api,
)

api_router = APIRouter()

# 注册子路由
api_router.include_router(auth.router, prefix="/auth", tags=["认证"])
api_router.include_router(providers.router, prefix="/providers", tags=["AI 服务商"])
api_router.include_router(agents.router, prefix="/agents", tags=["智能体"])
api_router.include_router(chat.router, prefix="/chat", tags=["对话"])
api_router.include_router(knowledge_bases.router, prefix="/knowledge-bases", tags=["知识库"])
api_router.include_router(knowledge_bases.files_router, prefix="/knowledge-files", tags=["知识库"])
api_router.include_router(knowledge_bases.process_router, prefix="/knowledge", tags=["知识库"])
api_router.include_router(tasks.router, prefix="/tasks", tags=["异步任务"])
api_router.include_router(billing.router, prefix="/billing", tags=["计费"])
api_router.include_router(payouts.router, prefix="/payouts", tags=["提现"])
api_router.include_router(integrations.router, prefix="/integrations", tags=["集成"])
api_router.include_router(emails.router, prefix="/emails", tags=["邮件"])
api_router.include_router(invites.router, prefix="/invites", tags=["邀请"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhook"])
api_router.include_router(realtime.router, prefix="/realtime", tags=["实时语音"])
api_router.include_router(audit.router, prefix="/audit-logs", tags=["审计"])
api_router.include_router(agent_api.router, prefix="/agent-api", tags=["开放 API"])
