"""
异步任务轮询 API：GET /tasks/{task_id} 查询知识处理任务
"""
import logging

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException

from dollyland.celery_app import celery_app
from dollyland.schemas.auth import UserResponse
from dollyland.schemas.knowledge_base import ProcessKnowledgeResponse
from dollyland.schemas.tasks import TaskStatusResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.tasks.knowledge_tasks import task_belongs_to

logger = logging.getLogger(__name__)

router = APIRouter()


def describe_task(result: AsyncResult) -> TaskStatusResponse:
    """Celery 结果转为轮询响应；失败时 error 为异常信息"""
    out = TaskStatusResponse(task_id=result.id, state=result.state, ready=result.ready())
    if result.successful():
        out.result = ProcessKnowledgeResponse.model_validate(result.result)
    elif result.failed():
        out.error = str(result.result) or type(result.result).__name__
        logger.info("知识处理任务失败 task_id=%s: %s", result.id, out.error)
    return out


@router.get("/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(
    task_id: str,
    current_user: UserResponse = Depends(get_current_active_user),
):
    """轮询自己提交的任务状态；他人的任务返回 404，自己名下未知的 task_id 返回 PENDING"""
    if not task_belongs_to(task_id, current_user.id):
        raise HTTPException(status_code=404, detail="任务不存在")
    return describe_task(AsyncResult(task_id, app=celery_app))
