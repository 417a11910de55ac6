"""
应用配置：从环境变量读取配置
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录（backend/）
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从仓库根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API配置
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Dollyland AI"
    ENVIRONMENT: str = "development"  # development | production

    # CORS配置：生产白名单 + 开发环境本地地址 + 预览域名正则
    CORS_ORIGINS: List[str] = [
        "https://dollyland.ai",
        "https://www.dollyland.ai",
    ]
    CORS_DEV_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8080",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8080",
    ]
    CORS_ORIGIN_REGEX: str = r"^https://[a-z0-9-]+\.lovable\.app$"
    CORS_MAX_AGE: int = 86400

    # 数据库配置
    DATABASE_URL: str = ""

    # Redis配置
    REDIS_URL: str = "redis://localhost:6379/0"

    # 缓存配置（使用同一 Redis，key 前缀区分）
    CACHE_ENABLED: bool = True
    CACHE_KEY_PREFIX: str = "cache:"
    CACHE_TTL_LIST: int = 60           # 列表类（智能体/套餐）60 秒
    CACHE_TTL_CONV: int = 30           # 会话列表、会话详情 30 秒

    # Celery配置（不填则与 REDIS_URL 一致）
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""
    CELERY_WORKER_CONCURRENCY: int = 2
    CELERY_TASK_TIME_LIMIT: int = 600  # 抓取与文档解析的单任务上限（秒）
    CELERY_RESULT_EXPIRES: int = 86400

    # MinIO配置（知识库文件存储）
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str = "minioadmin"
    MINIO_SECRET_KEY: str = "minioadmin"
    MINIO_SECURE: bool = False
    MINIO_BUCKET_NAME: str = "knowledge-files"

    # 安全配置
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_SECRET_KEY: str = "your-jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080
    EMAIL_CONFIRM_TOKEN_EXPIRE_HOURS: int = 48
    # 服务商 API Key 加密用 Fernet 密钥，为空时由 SECRET_KEY 派生
    ENCRYPTION_KEY: str = ""

    # 对话配置
    CHAT_HISTORY_LIMIT: int = 20  # 带入上下文的最近消息条数
    CHAT_KNOWLEDGE_CHUNK_LIMIT: int = 10  # 带入系统提示词的知识块数量
    CHAT_MAX_TOKENS: int = 1000
    CHAT_TEMPERATURE: float = 0.7
    CHAT_DEFAULT_SYSTEM_PROMPT: str = "You are a helpful AI assistant."
    CHAT_TITLE_MAX_LENGTH: int = 50

    # 各 AI 服务商接口地址与默认模型
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com"
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"
    ANTHROPIC_VERSION: str = "2023-06-01"
    OPENAI_DEFAULT_MODEL: str = "gpt-4o-mini"
    DEEPSEEK_DEFAULT_MODEL: str = "deepseek-chat"
    ANTHROPIC_DEFAULT_MODEL: str = "claude-3-5-haiku-latest"
    LLM_REQUEST_TIMEOUT: float = 120.0

    # 实时语音（平台级 OpenAI Key）
    OPENAI_API_KEY: str = ""
    OPENAI_REALTIME_URL: str = "wss://api.openai.com/v1/realtime"
    OPENAI_REALTIME_MODEL: str = "gpt-4o-realtime-preview-2024-12-17"

    # 知识库处理配置
    KNOWLEDGE_CHUNK_SIZE: int = 1000  # 目标块大小（字符数）
    KNOWLEDGE_MIN_CHUNK_LENGTH: int = 50  # 小于等于该长度的块丢弃
    KNOWLEDGE_MIN_CONTENT_LENGTH: int = 10  # 提取内容少于该长度视为失败
    FIRECRAWL_API_KEY: str = ""
    FIRECRAWL_API_URL: str = "https://api.firecrawl.dev"
    URL_FETCH_TIMEOUT: float = 30.0

    # 文件上传配置
    MAX_FILE_SIZE: int = 20971520  # 20MB
    ALLOWED_FILE_TYPES: str = "pdf,txt,md,html,htm,docx,pptx,xlsx,csv,json"
    FILE_NAME_MAX_LENGTH: int = 200
    FILE_FORBIDDEN_EXTENSIONS: str = "exe,bat,cmd,sh,ps1,scr,vbs,js,jar"

    # Stripe 计费
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_URL: str = "https://api.stripe.com"
    STRIPE_CURRENCY: str = "usd"
    STRIPE_STARTER_MAX_AMOUNT: int = 999  # unit_amount <= 该值映射为 Starter
    STRIPE_PRO_MIN_AMOUNT: int = 1900  # unit_amount >= 该值映射为 Pro
    FREE_PLAN_NAME: str = "Free"
    FREE_PLAN_CONVERSATION_LIMIT: int = 20
    FREE_PLAN_PERIOD_DAYS: int = 30

    # 创作者提现
    PAYOUT_MIN_CENTS: int = 1000

    # 第三方集成
    GITHUB_TOKEN: str = ""
    GITHUB_API_URL: str = "https://api.github.com"
    LINEAR_API_KEY: str = ""
    LINEAR_API_URL: str = "https://api.linear.app/graphql"
    INTEGRATION_TIMEOUT: float = 30.0

    # 邮件（Resend）
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com"
    EMAIL_FROM_INVITE: str = "Dolly AI <noreply@dolly.ai>"
    EMAIL_FROM_CONFIRMATION: str = "Dollyland AI <noreply@dollyland.ai>"
    FRONTEND_URL: str = "http://localhost:5173"
    EMAIL_CONFIRMATION_ENABLED: bool = False
    AUTH_WEBHOOK_SECRET: str = ""

    # 邀请
    INVITE_ONLY: bool = False
    INVITE_EXPIRE_DAYS: int = 7
    INVITE_CODE_LENGTH: int = 8

    # Webhook 推送
    WEBHOOK_TIMEOUT: float = 10.0
    WEBHOOK_RESPONSE_MAX_LENGTH: int = 2000

    # 操作审计：是否记录关键操作到 audit_log 表
    AUDIT_LOG_ENABLED: bool = True

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "app.log"

    # 用量与限流（按用户）
    RATE_LIMIT_UPLOAD_PER_DAY: int = 200  # 每日上传文件次数上限
    RATE_LIMIT_CONVERSATION_PER_DAY: int = 200  # 每日对话条数上限
    RATE_LIMIT_ENABLED: bool = True  # 是否启用限流

    # 开放 API（部署后用 x-agent-api-key 调用智能体）
    AGENT_API_MAX_REQUESTS_PER_HOUR: int = 1000  # 部署未指定时的每小时请求上限
    AGENT_API_MESSAGE_MAX_LENGTH: int = 4000
    AGENT_API_KEY_MIN_LENGTH: int = 20
    AGENT_API_KNOWLEDGE_CHUNK_LIMIT: int = 5

    @property
    def allowed_file_types_list(self) -> List[str]:
        """获取允许的文件类型列表"""
        return [x.strip().lower() for x in self.ALLOWED_FILE_TYPES.split(",") if x.strip()]

    @property
    def forbidden_file_extensions_list(self) -> List[str]:
        """禁止上传的扩展名列表（可执行/脚本等）"""
        return [x.strip().lower() for x in self.FILE_FORBIDDEN_EXTENSIONS.split(",") if x.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"


# 创建全局配置实例
settings = Settings()
