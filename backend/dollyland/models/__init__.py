# Database models
from dollyland.models.user import User
from dollyland.models.agent import Agent, AIProvider
from dollyland.models.conversation import Conversation, Message
from dollyland.models.knowledge_base import KnowledgeBase
from dollyland.models.file import KnowledgeFile, ProcessingStatus, SourceType
from dollyland.models.chunk import KnowledgeChunk
from dollyland.models.plan import SubscriptionPlan
from dollyland.models.subscription import UserSubscription
from dollyland.models.payout import CreatorEarning, PayoutRequest
from dollyland.models.invite import Invite
from dollyland.models.integration_log import IntegrationLog
from dollyland.models.webhook import Webhook, WebhookDelivery
from dollyland.models.deployment import AgentDeployment
from dollyland.models.audit_log import AuditLog

__all__ = [
    "User",
    "Agent",
    "AIProvider",
    "Conversation",
    "Message",
    "KnowledgeBase",
    "KnowledgeFile",
    "ProcessingStatus",
    "SourceType",
    "KnowledgeChunk",
    "SubscriptionPlan",
    "UserSubscription",
    "CreatorEarning",
    "PayoutRequest",
    "Invite",
    "IntegrationLog",
    "Webhook",
    "WebhookDelivery",
    "AgentDeployment",
    "AuditLog",
]
