"""
邀请码服务：生成、校验、核销
"""
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.models.invite import Invite

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    # sqlite 读回的时间不带时区
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def generate_invite_code(length: Optional[int] = None) -> str:
    n = length or settings.INVITE_CODE_LENGTH
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(n))


class InviteService:
    """邀请服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_invite(self, email: str, created_by: int) -> Invite:
        """创建邀请；邀请码冲突时重新生成"""
        for _ in range(5):
            code = generate_invite_code()
            exists = await self.get_by_code(code)
            if not exists:
                break
        else:
            raise ValueError("邀请码生成失败，请重试")
        invite = Invite(
            email=email.lower(),
            invite_code=code,
            created_by=created_by,
            expires_at=_now() + timedelta(days=settings.INVITE_EXPIRE_DAYS),
        )
        self.db.add(invite)
        await self.db.commit()
        await self.db.refresh(invite)
        return invite

    async def get_by_code(self, code: str) -> Optional[Invite]:
        result = await self.db.execute(
            select(Invite).where(Invite.invite_code == code.strip().upper())
        )
        return result.scalar_one_or_none()

    async def list_invites(self, created_by: int) -> Tuple[List[Invite], int]:
        result = await self.db.execute(
            select(Invite).where(Invite.created_by == created_by).order_by(Invite.created_at.desc(), Invite.id.desc())
        )
        invites = list(result.scalars().all())
        total = (await self.db.execute(
            select(func.count()).select_from(Invite).where(Invite.created_by == created_by)
        )).scalar() or 0
        return invites, total

    def check_usable(self, invite: Optional[Invite]) -> Tuple[bool, Optional[str]]:
        """判断邀请码是否可用，返回 (是否可用, 不可用原因)"""
        if invite is None:
            return False, "邀请码不存在"
        if invite.used_at is not None:
            return False, "邀请码已被使用"
        if _as_utc(invite.expires_at) < _now():
            return False, "邀请码已过期"
        return True, None

    async def validate_code(self, code: str) -> Tuple[bool, Optional[str]]:
        invite = await self.get_by_code(code)
        return self.check_usable(invite)

    async def redeem(self, code: str, user_id: int) -> Invite:
        """核销邀请码（不提交事务，由调用方与用户创建一并提交）"""
        invite = await self.get_by_code(code)
        ok, reason = self.check_usable(invite)
        if not ok:
            raise ValueError(reason)
        invite.used_at = _now()
        invite.used_by = user_id
        return invite

    async def revoke(self, invite_id: int, created_by: int) -> None:
        result = await self.db.execute(
            select(Invite).where(Invite.id == invite_id, Invite.created_by == created_by)
        )
        invite = result.scalar_one_or_none()
        if not invite:
            raise LookupError("邀请不存在")
        if invite.used_at is not None:
            raise ValueError("邀请码已被使用，无法撤销")
        await self.db.delete(invite)
        await self.db.commit()
