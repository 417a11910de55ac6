"""
Webhook 相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any


class WebhookCreate(BaseModel):
    agent_id: int
    url: str = Field(..., min_length=1, max_length=2000)
    events: List[str] = Field(..., min_length=1)
    secret: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    is_active: bool = True


class WebhookUpdate(BaseModel):
    url: Optional[str] = Field(None, min_length=1, max_length=2000)
    events: Optional[List[str]] = None
    secret: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None


class WebhookResponse(BaseModel):
    id: int
    agent_id: int
    url: str
    events: List[str]
    has_secret: bool = False
    headers: Optional[Dict[str, str]] = None
    is_active: bool
    created_at: datetime


class WebhookTrigger(BaseModel):
    """触发事件，推送到该智能体订阅了此事件的所有 Webhook"""
    agent_id: int
    event: str
    payload: Dict[str, Any] = {}


class WebhookDeliveryResponse(BaseModel):
    id: int
    webhook_id: int
    event: str
    payload: Optional[Dict[str, Any]] = None
    status_code: int
    success: bool
    response_body: Optional[str] = None
    error: Optional[str] = None
    is_retry: bool = False
    original_delivery_id: Optional[int] = None
    delivered_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookDeliveryListResponse(BaseModel):
    deliveries: List[WebhookDeliveryResponse]
