"""
Stripe REST 客户端（表单编码请求，Bearer 鉴权）
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from dollyland.core.config import settings
from dollyland.core.exceptions import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)


def flatten_params(params: Dict[str, Any], prefix: str = "") -> List[Tuple[str, str]]:
    """嵌套 dict/list 展开为 Stripe 表单键：a[b][0][c]=v"""
    items: List[Tuple[str, str]] = []
    for key, value in params.items():
        full_key = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            items.extend(flatten_params(value, full_key))
        elif isinstance(value, (list, tuple)):
            for idx, item in enumerate(value):
                if isinstance(item, dict):
                    items.extend(flatten_params(item, f"{full_key}[{idx}]"))
                else:
                    items.append((f"{full_key}[{idx}]", str(item)))
        elif isinstance(value, bool):
            items.append((full_key, "true" if value else "false"))
        else:
            items.append((full_key, str(value)))
    return items


class StripeClient:
    """只覆盖计费流程用到的接口：customers、subscriptions、checkout sessions"""

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        if not self.api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY 未配置")
        self._transport = transport

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{settings.STRIPE_API_URL.rstrip('/')}{path}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        form = flatten_params(params or {})
        async with httpx.AsyncClient(timeout=settings.INTEGRATION_TIMEOUT, transport=self._transport) as client:
            try:
                if method == "GET":
                    resp = await client.get(url, params=form, headers=headers)
                else:
                    resp = await client.request(method, url, data=dict(form), headers=headers)
            except httpx.HTTPError as e:
                raise ExternalServiceError("stripe", str(e))
        body = resp.json() if resp.content else {}
        if resp.status_code >= 400:
            message = (body.get("error") or {}).get("message") or resp.text[:300]
            logger.error("Stripe 请求失败 %s %s status=%s: %s", method, path, resp.status_code, message)
            raise ExternalServiceError("stripe", message, resp.status_code)
        return body

    async def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        body = await self._request("GET", "/v1/customers", {"email": email, "limit": 1})
        data = body.get("data") or []
        return data[0] if data else None

    async def create_customer(self, email: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._request("POST", "/v1/customers", {"email": email, "metadata": metadata or {}})

    async def get_or_create_customer(self, email: str, user_id: int) -> Dict[str, Any]:
        customer = await self.find_customer_by_email(email)
        if customer:
            return customer
        return await self.create_customer(email, {"user_id": user_id})

    async def get_active_subscription(self, customer_id: str) -> Optional[Dict[str, Any]]:
        body = await self._request(
            "GET", "/v1/subscriptions", {"customer": customer_id, "status": "active", "limit": 1}
        )
        data = body.get("data") or []
        return data[0] if data else None

    async def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/v1/checkout/sessions", params)
