"""
Webhook API：按智能体配置外发 Webhook、触发事件、查看与重试投递
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.schemas.auth import UserResponse
from dollyland.schemas.webhook import (
    WebhookCreate,
    WebhookUpdate,
    WebhookResponse,
    WebhookTrigger,
    WebhookDeliveryResponse,
    WebhookDeliveryListResponse,
)
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.webhook_service import WebhookService

router = APIRouter()


@router.post("", response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    body: WebhookCreate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    service = WebhookService(db)
    try:
        hook = await service.create_webhook(body, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return service.to_response(hook)


@router.get("", response_model=list[WebhookResponse])
async def list_webhooks(
    agent_id: Optional[int] = None,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    service = WebhookService(db)
    return [service.to_response(h) for h in await service.list_webhooks(current_user.id, agent_id)]


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: int,
    body: WebhookUpdate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    service = WebhookService(db)
    try:
        hook = await service.update_webhook(webhook_id, body, current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not hook:
        raise HTTPException(status_code=404, detail="Webhook 不存在")
    return service.to_response(hook)


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    if not await WebhookService(db).delete_webhook(webhook_id, current_user.id):
        raise HTTPException(status_code=404, detail="Webhook 不存在")


@router.post("/trigger", response_model=WebhookDeliveryListResponse)
async def trigger_event(
    body: WebhookTrigger,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """向智能体订阅了该事件的所有启用中的 Webhook 推送"""
    try:
        deliveries = await WebhookService(db).trigger(body.agent_id, body.event, body.payload, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return WebhookDeliveryListResponse(
        deliveries=[WebhookDeliveryResponse.model_validate(d) for d in deliveries]
    )


@router.get("/{webhook_id}/deliveries", response_model=WebhookDeliveryListResponse)
async def list_deliveries(
    webhook_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """最近 50 条投递记录"""
    service = WebhookService(db)
    if not await service.get_webhook(webhook_id, current_user.id):
        raise HTTPException(status_code=404, detail="Webhook 不存在")
    deliveries = await service.list_deliveries(webhook_id)
    return WebhookDeliveryListResponse(
        deliveries=[WebhookDeliveryResponse.model_validate(d) for d in deliveries]
    )


@router.post("/deliveries/{delivery_id}/retry", response_model=WebhookDeliveryResponse)
async def retry_delivery(
    delivery_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """重新投递（带 X-Dolly-Retry 头）"""
    try:
        delivery = await WebhookService(db).retry_delivery(delivery_id, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return WebhookDeliveryResponse.model_validate(delivery)
