"""
认证相关API
"""
from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.core.config import settings
from dollyland.schemas.auth import EmailConfirmResponse, Token, UserCreate, UserResponse, UpdatePasswordRequest
from dollyland.services.auth_service import AuthService
from dollyland.services.email_service import send_confirmation_email_quietly

router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db)
):
    """用户注册（开启邮箱确认时后台发送确认邮件）"""
    auth_service = AuthService(db)
    try:
        user = await auth_service.register_user(user_data)
    except ValueError as e:
        msg = str(e)
        if "已存在" in msg:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=msg)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=msg)
    if settings.EMAIL_CONFIRMATION_ENABLED:
        background_tasks.add_task(
            send_confirmation_email_quietly,
            user.email,
            auth_service.build_confirmation_url(user.email),
        )
    return user


@router.post("/login", response_model=Token)
async def login(
    username: str = Form(..., description="用户名或邮箱"),
    password: str = Form(..., description="密码"),
    db: AsyncSession = Depends(get_db),
):
    """用户登录"""
    auth_service = AuthService(db)
    user = await auth_service.authenticate_user(username, password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户名或密码错误",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = auth_service.create_access_token(
        data={"sub": user.username},
        expires_delta=timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/confirm", response_model=EmailConfirmResponse)
async def confirm_email(token: str, db: AsyncSession = Depends(get_db)):
    """邮箱确认链接落地"""
    try:
        user = await AuthService(db).confirm_email(token)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return EmailConfirmResponse(success=True, email=user.email, email_confirmed_at=user.email_confirmed_at)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> UserResponse:
    """获取当前用户信息"""
    try:
        user = await AuthService(db).get_current_user(token)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return UserResponse.model_validate(user)


async def get_current_active_user(
    current_user: UserResponse = Depends(get_current_user)
) -> UserResponse:
    """获取当前活跃用户"""
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="用户未激活")
    return current_user


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: UserResponse = Depends(get_current_user)):
    """获取当前用户信息"""
    return current_user


@router.put("/me/password", status_code=status.HTTP_204_NO_CONTENT)
async def update_password(
    body: UpdatePasswordRequest,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """修改当前用户密码"""
    try:
        await AuthService(db).update_password(current_user.id, body.old_password, body.new_password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
