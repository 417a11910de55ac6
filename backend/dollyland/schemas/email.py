"""
邮件相关Schema
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Any, Dict


class InviteEmailRequest(BaseModel):
    """发送邀请邮件"""
    email: EmailStr
    invite_code: str = Field(..., min_length=1)
    inviter_name: Optional[str] = None


class ConfirmationEmailRequest(BaseModel):
    """发送注册确认邮件"""
    email: EmailStr
    confirmation_url: str = Field(..., min_length=1)


class EmailSendResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None
    message: str


class AuthWebhookRecord(BaseModel):
    email: Optional[str] = None
    email_confirmed_at: Optional[str] = None
    confirmation_token: Optional[str] = None


class AuthWebhookEvent(BaseModel):
    """认证事件回调，如 user.created"""
    type: str
    record: AuthWebhookRecord = AuthWebhookRecord()
    extra: Optional[Dict[str, Any]] = None
