"""
Webhook 服务：配置管理、事件投递（HMAC 签名）、投递记录与重试
"""
import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.core.crypto import decrypt_secret, encrypt_secret
from dollyland.models.agent import Agent
from dollyland.models.webhook import Webhook, WebhookDelivery
from dollyland.schemas.webhook import WebhookCreate, WebhookResponse, WebhookUpdate

logger = logging.getLogger(__name__)

USER_AGENT = "Dolly-Webhooks/1.0"


def sign_payload(body: bytes, secret: str) -> str:
    """X-Dolly-Signature 的值：sha256=<hex hmac>"""
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def encode_body(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class WebhookService:
    """Webhook 服务类"""

    def __init__(self, db: AsyncSession, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.db = db
        self._transport = transport

    @staticmethod
    def to_response(hook: Webhook) -> WebhookResponse:
        return WebhookResponse(
            id=hook.id,
            agent_id=hook.agent_id,
            url=hook.url,
            events=hook.events or [],
            has_secret=bool(hook.secret),
            headers=hook.headers,
            is_active=hook.is_active,
            created_at=hook.created_at,
        )

    async def _own_agent_exists(self, agent_id: int, user_id: int) -> bool:
        result = await self.db.execute(select(Agent.id).where(Agent.id == agent_id, Agent.user_id == user_id))
        return result.scalar_one_or_none() is not None

    async def create_webhook(self, data: WebhookCreate, user_id: int) -> Webhook:
        if not await self._own_agent_exists(data.agent_id, user_id):
            raise LookupError("智能体不存在")
        if not data.url.startswith(("http://", "https://")):
            raise ValueError("Webhook 地址必须为 http/https")
        hook = Webhook(
            user_id=user_id,
            agent_id=data.agent_id,
            url=data.url,
            events=data.events,
            secret=encrypt_secret(data.secret) if data.secret else None,
            headers=data.headers or {},
            is_active=data.is_active,
        )
        self.db.add(hook)
        await self.db.commit()
        await self.db.refresh(hook)
        return hook

    async def get_webhook(self, webhook_id: int, user_id: int) -> Optional[Webhook]:
        result = await self.db.execute(
            select(Webhook).where(Webhook.id == webhook_id, Webhook.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_webhooks(self, user_id: int, agent_id: Optional[int] = None) -> List[Webhook]:
        cond = [Webhook.user_id == user_id]
        if agent_id:
            cond.append(Webhook.agent_id == agent_id)
        result = await self.db.execute(select(Webhook).where(*cond).order_by(Webhook.id.desc()))
        return list(result.scalars().all())

    async def update_webhook(self, webhook_id: int, data: WebhookUpdate, user_id: int) -> Optional[Webhook]:
        hook = await self.get_webhook(webhook_id, user_id)
        if not hook:
            return None
        fields = data.model_dump(exclude_unset=True)
        if fields.get("url") and not fields["url"].startswith(("http://", "https://")):
            raise ValueError("Webhook 地址必须为 http/https")
        if "secret" in fields:
            secret = fields.pop("secret")
            hook.secret = encrypt_secret(secret) if secret else None
        for key, value in fields.items():
            setattr(hook, key, value)
        await self.db.commit()
        await self.db.refresh(hook)
        return hook

    async def delete_webhook(self, webhook_id: int, user_id: int) -> bool:
        hook = await self.get_webhook(webhook_id, user_id)
        if not hook:
            return False
        await self.db.execute(delete(WebhookDelivery).where(WebhookDelivery.webhook_id == webhook_id))
        await self.db.delete(hook)
        await self.db.commit()
        return True

    async def _deliver(
        self,
        hook: Webhook,
        event: str,
        body: Dict[str, Any],
        original_delivery_id: Optional[int] = None,
    ) -> WebhookDelivery:
        """发送一次并记录投递结果；网络错误写入 error 字段，不抛出"""
        raw = encode_body(body)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Dolly-Event": event,
            "X-Dolly-Delivery": str(uuid.uuid4()),
        }
        headers.update(hook.headers or {})
        if hook.secret:
            headers["X-Dolly-Signature"] = sign_payload(raw, decrypt_secret(hook.secret))
        if original_delivery_id is not None:
            headers["X-Dolly-Retry"] = "true"

        status_code, success, response_body, error = 0, False, None, None
        async with httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT, transport=self._transport) as client:
            try:
                resp = await client.post(hook.url, content=raw, headers=headers)
                status_code = resp.status_code
                success = 200 <= resp.status_code < 300
                response_body = resp.text[: settings.WEBHOOK_RESPONSE_MAX_LENGTH]
            except httpx.HTTPError as e:
                error = str(e) or e.__class__.__name__
                logger.warning("Webhook 投递失败 webhook_id=%s url=%s: %s", hook.id, hook.url, error)

        delivery = WebhookDelivery(
            webhook_id=hook.id,
            event=event,
            payload=body,
            status_code=status_code,
            success=success,
            response_body=response_body,
            error=error,
            is_retry=original_delivery_id is not None,
            original_delivery_id=original_delivery_id,
            delivered_at=datetime.now(timezone.utc),
        )
        self.db.add(delivery)
        await self.db.commit()
        await self.db.refresh(delivery)
        return delivery

    async def trigger(self, agent_id: int, event: str, payload: Dict[str, Any], user_id: int) -> List[WebhookDelivery]:
        """向该智能体订阅了 event 的所有启用中的 Webhook 推送"""
        if not await self._own_agent_exists(agent_id, user_id):
            raise LookupError("智能体不存在")
        result = await self.db.execute(
            select(Webhook).where(Webhook.agent_id == agent_id, Webhook.is_active.is_(True))
        )
        hooks = [h for h in result.scalars().all() if event in (h.events or [])]
        body = {
            "event": event,
            "agent_id": agent_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": payload,
        }
        deliveries = [await self._deliver(h, event, body) for h in hooks]
        logger.info("事件 %s 已推送 %s 个 Webhook（agent_id=%s）", event, len(deliveries), agent_id)
        return deliveries

    async def list_deliveries(self, webhook_id: int, limit: int = 50) -> List[WebhookDelivery]:
        result = await self.db.execute(
            select(WebhookDelivery)
            .where(WebhookDelivery.webhook_id == webhook_id)
            .order_by(WebhookDelivery.delivered_at.desc(), WebhookDelivery.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def retry_delivery(self, delivery_id: int, user_id: int) -> WebhookDelivery:
        result = await self.db.execute(
            select(WebhookDelivery, Webhook)
            .join(Webhook, Webhook.id == WebhookDelivery.webhook_id)
            .where(WebhookDelivery.id == delivery_id, Webhook.user_id == user_id)
        )
        row = result.first()
        if row is None:
            raise LookupError("投递记录不存在")
        original, hook = row
        return await self._deliver(hook, original.event, original.payload or {}, original_delivery_id=original.id)
