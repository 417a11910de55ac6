"""
知识处理异步任务：批量抓取、解析、切分
在 Celery Worker 中执行，必须使用任务内创建的 engine/session（create_async_engine_and_session_for_celery），
全局 AsyncSessionLocal 绑定在 API 进程的事件循环上。
"""
import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from dollyland.core.database import create_async_engine_and_session_for_celery
from dollyland.schemas.knowledge_base import ProcessKnowledgeRequest
from dollyland.services.knowledge_base_service import KnowledgeBaseService

from dollyland.celery_app import celery_app

logger = logging.getLogger(__name__)


def new_task_id(user_id: int) -> str:
    """任务 ID 带上提交者，轮询时据此校验归属"""
    return f"u{user_id}-{uuid4()}"


def task_belongs_to(task_id: str, user_id: int) -> bool:
    return task_id.startswith(f"u{user_id}-")


def _run_async(coro):
    """在同步上下文中运行异步协程（Celery 任务内使用）"""
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _with_celery_db(async_fn):
    """在任务内创建当前 loop 的 engine/session，执行 async_fn(db)，用完后 dispose engine。"""
    async def _run():
        engine, session_factory = create_async_engine_and_session_for_celery()
        try:
            async with session_factory() as db:
                return await async_fn(db)
        finally:
            await engine.dispose()
    return _run


@celery_app.task(bind=True, name="knowledge.process_files")
def process_knowledge_task(
    self,
    user_id: int,
    file_id: Optional[int] = None,
    knowledge_base_id: Optional[int] = None,
    batch_process: bool = False,
) -> Dict[str, Any]:
    """异步：处理单个知识文件或知识库内全部待处理文件"""
    req = ProcessKnowledgeRequest(file_id=file_id, knowledge_base_id=knowledge_base_id, batch_process=batch_process)

    async def _run(db):
        result = await KnowledgeBaseService(db).process_request(req, user_id)
        return result.model_dump()

    try:
        return _run_async(_with_celery_db(_run)())
    except Exception as e:
        logger.exception("process_knowledge_task failed: %s", e)
        raise
