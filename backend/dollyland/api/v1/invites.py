"""
邀请码API
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.core.exceptions import ConfigurationError, ExternalServiceError
from dollyland.schemas.auth import UserResponse
from dollyland.schemas.invite import (
    InviteCreate,
    InviteResponse,
    InviteListResponse,
    InviteValidateResponse,
)
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.invite_service import InviteService
from dollyland.services.email_service import send_invite_email

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
async def create_invite(
    body: InviteCreate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """创建邀请；send_email=true 时发送邀请邮件，发送失败不影响邀请本身"""
    try:
        invite = await InviteService(db).create_invite(body.email, current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))
    out = InviteResponse.model_validate(invite)
    if body.send_email:
        try:
            await send_invite_email(invite.email, invite.invite_code, current_user.username)
            out.email_sent = True
        except (ConfigurationError, ExternalServiceError) as e:
            logger.warning("邀请邮件发送失败 invite_id=%s: %s", invite.id, e)
            out.email_sent = False
    return out


@router.get("", response_model=InviteListResponse)
async def list_invites(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    invites, total = await InviteService(db).list_invites(current_user.id)
    return InviteListResponse(invites=[InviteResponse.model_validate(i) for i in invites], total=total)


@router.delete("/{invite_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_invite(
    invite_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """撤销未使用的邀请"""
    try:
        await InviteService(db).revoke(invite_id, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{code}/validate", response_model=InviteValidateResponse)
async def validate_invite(code: str, db: AsyncSession = Depends(get_db)):
    """公开接口：注册前校验邀请码"""
    valid, reason = await InviteService(db).validate_code(code)
    return InviteValidateResponse(valid=valid, reason=reason)
