"""
业务异常
"""
from typing import Optional


class ExternalServiceError(Exception):
    """调用第三方服务失败（LLM、Stripe、GitHub、Linear、Firecrawl、Resend 等）"""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.message = message
        self.status_code = status_code
        super().__init__(f"{service} 调用失败: {message}")


class ConfigurationError(Exception):
    """必需配置缺失（如第三方 API Key 未配置）"""
