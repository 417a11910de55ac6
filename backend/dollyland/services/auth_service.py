"""
认证服务（直接使用 bcrypt，避免 passlib 与 bcrypt 版本不兼容）
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import bcrypt
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from dollyland.core.config import settings
from dollyland.models.user import User
from dollyland.schemas.auth import UserCreate
from dollyland.services.invite_service import InviteService

# bcrypt 最多 72 字节，超长密码需截断（与注册/登录一致）
BCRYPT_MAX_BYTES = 72

EMAIL_CONFIRM_PURPOSE = "confirm_email"


def _truncate_password_72(password: str) -> bytes:
    """将密码截断为 72 字节（UTF-8），返回 bytes 供 bcrypt 使用"""
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


class AuthService:
    """认证服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """验证密码"""
        try:
            return bcrypt.checkpw(
                _truncate_password_72(plain_password),
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            # 库中哈希格式损坏
            return False

    def get_password_hash(self, password: str) -> str:
        """生成密码哈希"""
        return bcrypt.hashpw(
            _truncate_password_72(password),
            bcrypt.gensalt(),
        ).decode("utf-8")

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """创建访问令牌"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def create_email_confirm_token(self, email: str) -> str:
        """注册确认邮件中的令牌，purpose 区分于登录令牌"""
        return self.create_access_token(
            {"sub": email, "purpose": EMAIL_CONFIRM_PURPOSE},
            expires_delta=timedelta(hours=settings.EMAIL_CONFIRM_TOKEN_EXPIRE_HOURS),
        )

    def build_confirmation_url(self, email: str) -> str:
        token = self.create_email_confirm_token(email)
        return f"{settings.FRONTEND_URL.rstrip('/')}/auth/confirm?token={token}"

    async def authenticate_user(self, username: str, password: str) -> Optional[User]:
        """验证用户（用户名或邮箱均可登录）"""
        result = await self.db.execute(
            select(User).where(or_(User.username == username, User.email == username.lower()))
        )
        user = result.scalar_one_or_none()
        if not user or not (user.password_hash and user.password_hash.strip()):
            return None
        if not self.verify_password(password, user.password_hash):
            return None
        return user

    async def get_user_by_username(self, username: str) -> Optional[User]:
        """根据用户名获取用户"""
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """根据邮箱获取用户"""
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def register_user(self, user_data: UserCreate) -> User:
        """注册用户；开启 INVITE_ONLY 时必须提供有效邀请码"""
        if await self.get_user_by_username(user_data.username):
            raise ValueError("用户名已存在")
        if await self.get_user_by_email(user_data.email):
            raise ValueError("邮箱已存在")

        invite_service = InviteService(self.db)
        code = (user_data.invite_code or "").strip()
        if settings.INVITE_ONLY and not code:
            raise ValueError("当前仅支持邀请注册，请填写邀请码")
        if code:
            ok, reason = await invite_service.validate_code(code)
            if not ok:
                raise ValueError(reason)

        user = User(
            username=user_data.username,
            email=user_data.email.lower(),
            password_hash=self.get_password_hash(user_data.password),
            full_name=user_data.full_name,
        )
        self.db.add(user)
        await self.db.flush()
        if code:
            await invite_service.redeem(code, user.id)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def get_current_user(self, token: str) -> User:
        """获取当前用户"""
        credentials_exception = ValueError("无效的认证凭据")
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            raise credentials_exception
        username = payload.get("sub")
        if username is None or payload.get("purpose"):
            raise credentials_exception
        user = await self.get_user_by_username(username)
        if user is None:
            raise credentials_exception
        return user

    async def confirm_email(self, token: str) -> User:
        """校验确认令牌并标记邮箱已确认（重复确认幂等）"""
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            raise ValueError("确认链接无效或已过期")
        if payload.get("purpose") != EMAIL_CONFIRM_PURPOSE or not payload.get("sub"):
            raise ValueError("确认链接无效或已过期")
        user = await self.get_user_by_email(payload["sub"])
        if user is None:
            raise ValueError("用户不存在")
        if user.email_confirmed_at is None:
            user.email_confirmed_at = datetime.now(timezone.utc)
            await self.db.commit()
            await self.db.refresh(user)
        return user

    async def update_password(self, user_id: int, old_password: str, new_password: str) -> None:
        """修改密码"""
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise ValueError("用户不存在")
        if not self.verify_password(old_password, user.password_hash):
            raise ValueError("原密码错误")
        user.password_hash = self.get_password_hash(new_password)
        await self.db.commit()
