"""
邀请相关Schema
"""
from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional, List


class InviteCreate(BaseModel):
    email: EmailStr
    send_email: bool = True


class InviteResponse(BaseModel):
    id: int
    email: str
    invite_code: str
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime
    email_sent: Optional[bool] = None

    class Config:
        from_attributes = True


class InviteListResponse(BaseModel):
    invites: List[InviteResponse]
    total: int


class InviteValidateResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None
