"""
FastAPI主应用入口
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from dollyland.core.config import settings
from dollyland.core.cors import allowed_origins
from dollyland.core.database import engine, Base, AsyncSessionLocal
from dollyland.core.exceptions import ConfigurationError, ExternalServiceError
from dollyland.core.logging import setup_logging
from dollyland.core.health import collect_health
from dollyland.api.v1 import api_router
from dollyland.services.billing_service import seed_default_plans

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时执行
    setup_logging()
    # 创建数据库表
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        created = await seed_default_plans(session)
        if created:
            logger.info("已初始化 %s 个默认套餐", created)

    yield

    # 关闭时执行
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="AI 智能体平台后端 API：对话、知识库、计费、集成",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS配置：固定白名单 + 预览域名正则
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_origin_regex=settings.CORS_ORIGIN_REGEX or None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=settings.CORS_MAX_AGE,
)

# GZip压缩
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个请求生成或透传 X-Request-ID，并写入 request.state"""
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


def _error_response(error: str, request_id: Optional[str] = None) -> dict:
    return {"error": error, "request_id": request_id}


def _jsonable_errors(errs) -> list:
    # pydantic 的 ctx 里可能带异常对象
    return jsonable_encoder([{k: v for k, v in e.items() if k in ("type", "loc", "msg", "input")} for e in errs])


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """统一 HTTP 异常响应格式"""
    rid = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_response(exc.detail if isinstance(exc.detail, str) else str(exc.detail), rid),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 校验错误统一格式"""
    rid = getattr(request.state, "request_id", None)
    errs = exc.errors()
    message = errs[0].get("msg", "请求参数校验失败") if errs else "请求参数校验失败"
    body = _error_response(message, rid)
    body["errors"] = _jsonable_errors(errs)
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(ExternalServiceError)
async def external_service_exception_handler(request: Request, exc: ExternalServiceError):
    """第三方服务失败统一返回 502，带上游信息"""
    rid = getattr(request.state, "request_id", None)
    logger.error("[%s] %s", rid, exc)
    return JSONResponse(status_code=502, content=_error_response(exc.message, rid))


@app.exception_handler(ConfigurationError)
async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    rid = getattr(request.state, "request_id", None)
    logger.error("[%s] 配置缺失: %s", rid, exc)
    return JSONResponse(status_code=500, content=_error_response(str(exc), rid))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """未捕获异常统一格式；生产环境不暴露异常信息"""
    rid = getattr(request.state, "request_id", None)
    logger.exception("[%s] 未处理异常: %s", rid, exc)
    message = "服务器内部错误" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content=_error_response(message, rid))


# 注册路由
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": f"{settings.PROJECT_NAME} API",
        "version": APP_VERSION,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查：返回各依赖连通状态"""
    return JSONResponse(content=await collect_health())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dollyland.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_excludes=["**/__pycache__/**", "**/*.pyc"],
    )
