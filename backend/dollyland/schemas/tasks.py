"""
知识处理异步任务 Schema：提交结果与轮询状态
"""
from pydantic import BaseModel
from typing import Optional

from dollyland.schemas.knowledge_base import ProcessKnowledgeResponse

TASK_SUBMITTED_MESSAGE = "任务已提交，请轮询 GET /api/v1/tasks/{task_id} 查看状态"


class TaskEnqueueResponse(BaseModel):
    """提交结果；sync 为 True 时未进入队列，task_id 为空，result 为同步处理结果"""
    task_id: Optional[str] = None
    message: str = TASK_SUBMITTED_MESSAGE
    sync: bool = False
    result: Optional[ProcessKnowledgeResponse] = None


class TaskStatusResponse(BaseModel):
    """轮询结果：state 为 Celery 状态（PENDING/STARTED/SUCCESS/FAILURE），ready 表示已结束"""
    task_id: str
    state: str
    ready: bool = False
    result: Optional[ProcessKnowledgeResponse] = None
    error: Optional[str] = None
