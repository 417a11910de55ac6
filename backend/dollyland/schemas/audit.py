"""审计日志 Schema"""
import json
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator


class AuditLogResponse(BaseModel):
    """一条审计记录；detail 入库为 JSON 文本，返回时还原为对象"""
    id: int
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    detail: Optional[Any] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator("detail", mode="before")
    @classmethod
    def _parse_detail(cls, value):
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
