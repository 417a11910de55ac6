"""
邮件API（Resend）：邀请邮件、注册确认邮件、认证事件回调
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.core.database import get_db
from dollyland.schemas.auth import UserResponse
from dollyland.schemas.email import (
    InviteEmailRequest,
    ConfirmationEmailRequest,
    EmailSendResponse,
    AuthWebhookEvent,
)
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.auth_service import AuthService
from dollyland.services.email_service import send_invite_email, send_confirmation_email

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/invite", response_model=EmailSendResponse)
async def send_invite(
    body: InviteEmailRequest,
    current_user: UserResponse = Depends(get_current_active_user),
):
    message_id = await send_invite_email(body.email, body.invite_code, body.inviter_name)
    return EmailSendResponse(success=True, message_id=message_id, message="Invite email sent successfully")


@router.post("/confirmation", response_model=EmailSendResponse)
async def send_confirmation(
    body: ConfirmationEmailRequest,
    current_user: UserResponse = Depends(get_current_active_user),
):
    message_id = await send_confirmation_email(body.email, body.confirmation_url)
    return EmailSendResponse(success=True, message_id=message_id, message="Confirmation email sent successfully")


@router.post("/auth-webhook")
async def auth_webhook(
    event: AuthWebhookEvent,
    x_webhook_secret: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """认证事件回调：user.created 且邮箱未确认时发送确认邮件"""
    if settings.AUTH_WEBHOOK_SECRET and not hmac.compare_digest(
        x_webhook_secret or "", settings.AUTH_WEBHOOK_SECRET
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Webhook 密钥无效")
    record = event.record
    if event.type == "user.created" and record.email and not record.email_confirmed_at:
        if record.confirmation_token:
            url = f"{settings.FRONTEND_URL.rstrip('/')}/auth/confirm?token={record.confirmation_token}"
        else:
            url = AuthService(db).build_confirmation_url(record.email)
        await send_confirmation_email(record.email, url)
        logger.info("认证回调：已向 %s 发送确认邮件", record.email)
    return {"success": True}
