"""
知识库相关API：知识库、知识文件（上传/网页）、知识处理
"""
import asyncio
import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.schemas.knowledge_base import (
    KnowledgeBaseCreate,
    KnowledgeBaseResponse,
    KnowledgeBaseListResponse,
    KnowledgeUrlCreate,
    KnowledgeFileResponse,
    KnowledgeFileListResponse,
    KnowledgeChunkResponse,
    KnowledgeChunkListResponse,
    ProcessKnowledgeRequest,
    ProcessKnowledgeResponse,
)
from dollyland.schemas.auth import UserResponse
from dollyland.schemas.tasks import TaskEnqueueResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.api.deps import require_upload_rate_limit, get_client_ip, get_request_id
from dollyland.services.knowledge_base_service import KnowledgeBaseService
from dollyland.services.audit_service import log_audit
from dollyland.tasks.knowledge_tasks import new_task_id, process_knowledge_task

logger = logging.getLogger(__name__)

# 提交 Celery 任务超时（秒），超时则降级为同步执行，避免 Redis 不可达时请求一直挂起
CELERY_SUBMIT_TIMEOUT = 10.0


async def _submit_celery_task(submit_fn: Callable[[], Any]):
    """在线程池中执行 submit_fn（即 task.apply_async()），超时则抛 asyncio.TimeoutError。"""
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(None, submit_fn),
        timeout=CELERY_SUBMIT_TIMEOUT,
    )


def _is_broker_unavailable(exc: Exception) -> bool:
    name = type(exc).__name__
    return "ConnectionError" in name or "OperationalError" in name or "Name or service not known" in str(exc)


router = APIRouter()
files_router = APIRouter()
process_router = APIRouter()


async def _own_kb(kb_id: int, user_id: int, db: AsyncSession):
    kb = await KnowledgeBaseService(db).get_knowledge_base(kb_id, user_id)
    if not kb:
        raise HTTPException(status_code=404, detail="知识库不存在")
    return kb


# ---------- 知识库 ----------

@router.post("", response_model=KnowledgeBaseResponse, status_code=status.HTTP_201_CREATED)
async def create_knowledge_base(
    kb_data: KnowledgeBaseCreate,
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """创建知识库（隶属于自己的智能体）"""
    kb_service = KnowledgeBaseService(db)
    try:
        kb = await kb_service.create_knowledge_base(kb_data, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await log_audit(
        db, current_user.id, "create_kb", "knowledge_base", str(kb.id), {"name": kb.name},
        get_client_ip(request), get_request_id(request),
        request.headers.get("user-agent"),
    )
    return await kb_service.to_response(kb)


@router.get("", response_model=KnowledgeBaseListResponse)
async def list_knowledge_bases(
    agent_id: Optional[int] = None,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    kbs = await KnowledgeBaseService(db).list_knowledge_bases(current_user.id, agent_id)
    return KnowledgeBaseListResponse(knowledge_bases=kbs, total=len(kbs))


@router.get("/{kb_id}", response_model=KnowledgeBaseResponse)
async def get_knowledge_base(
    kb_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """知识库详情（含文件数与知识块数）"""
    kb = await _own_kb(kb_id, current_user.id, db)
    return await KnowledgeBaseService(db).to_response(kb)


@router.delete("/{kb_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge_base(
    kb_id: int,
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        await KnowledgeBaseService(db).delete_knowledge_base(kb_id, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await log_audit(
        db, current_user.id, "delete_kb", "knowledge_base", str(kb_id), None,
        get_client_ip(request), get_request_id(request),
        request.headers.get("user-agent"),
    )


# ---------- 知识文件 ----------

@router.post("/{kb_id}/files", response_model=KnowledgeFileResponse, status_code=status.HTTP_201_CREATED)
async def upload_knowledge_file(
    kb_id: int,
    request: Request,
    file: UploadFile = File(...),
    process: bool = Form(False),
    current_user: UserResponse = Depends(require_upload_rate_limit),
    db: AsyncSession = Depends(get_db),
):
    """上传知识文件；process=true 时立即处理（处理失败体现在 processing_status）"""
    kb = await _own_kb(kb_id, current_user.id, db)
    kb_service = KnowledgeBaseService(db)
    content = await file.read()
    try:
        kf = await kb_service.upload_file(kb, file.filename or "", content, file.content_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await log_audit(
        db, current_user.id, "upload_knowledge_file", "knowledge_file", str(kf.id),
        {"file_name": kf.file_name, "size": kf.file_size}, get_client_ip(request), get_request_id(request),
        request.headers.get("user-agent"),
    )
    if process:
        file_id = kf.id
        try:
            await kb_service.process_file(kf)
        except Exception as e:
            logger.warning("上传后立即处理失败 file_id=%s: %s", file_id, e)
        kf = await kb_service.get_file(file_id, current_user.id)
    return kf


@router.post("/{kb_id}/urls", response_model=KnowledgeFileResponse, status_code=status.HTTP_201_CREATED)
async def add_knowledge_url(
    kb_id: int,
    body: KnowledgeUrlCreate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """添加网页来源（Google 文档自动转为纯文本导出地址）"""
    kb = await _own_kb(kb_id, current_user.id, db)
    kb_service = KnowledgeBaseService(db)
    try:
        kf = await kb_service.add_url(kb, body.url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if body.process:
        file_id = kf.id
        try:
            await kb_service.process_file(kf)
        except Exception as e:
            logger.warning("网页来源立即处理失败 file_id=%s: %s", file_id, e)
        kf = await kb_service.get_file(file_id, current_user.id)
    return kf


@router.get("/{kb_id}/files", response_model=KnowledgeFileListResponse)
async def list_knowledge_files(
    kb_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    await _own_kb(kb_id, current_user.id, db)
    files = await KnowledgeBaseService(db).list_files(kb_id)
    return KnowledgeFileListResponse(
        files=[KnowledgeFileResponse.model_validate(f) for f in files],
        total=len(files),
    )


@files_router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge_file(
    file_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """删除知识文件及其知识块"""
    try:
        await KnowledgeBaseService(db).delete_file(file_id, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@files_router.get("/{file_id}/chunks", response_model=KnowledgeChunkListResponse)
async def list_knowledge_chunks(
    file_id: int,
    page: int = 1,
    page_size: int = 20,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    kb_service = KnowledgeBaseService(db)
    if not await kb_service.get_file(file_id, current_user.id):
        raise HTTPException(status_code=404, detail="文件不存在")
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)
    chunks, total = await kb_service.list_chunks(file_id, page, page_size)
    return KnowledgeChunkListResponse(
        chunks=[KnowledgeChunkResponse.model_validate(c) for c in chunks],
        total=total,
        page=page,
        page_size=page_size,
    )


# ---------- 知识处理 ----------

@process_router.post("/process", response_model=ProcessKnowledgeResponse)
async def process_knowledge(
    body: ProcessKnowledgeRequest,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """同步处理：单个文件（file_id）或知识库内全部待处理文件（knowledge_base_id + batch_process）"""
    try:
        return await KnowledgeBaseService(db).process_request(body, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@process_router.post("/process/async", response_model=TaskEnqueueResponse)
async def process_knowledge_async(
    body: ProcessKnowledgeRequest,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """异步处理，立即返回 task_id。Redis/Celery 不可用或提交超时时降级为同步执行。"""
    kb_service = KnowledgeBaseService(db)
    if body.batch_process and body.knowledge_base_id:
        await _own_kb(body.knowledge_base_id, current_user.id, db)
    elif body.file_id:
        if not await kb_service.get_file(body.file_id, current_user.id):
            raise HTTPException(status_code=404, detail="文件不存在")
    else:
        raise HTTPException(status_code=400, detail="需要提供 file_id 或 knowledge_base_id")

    async def _run_sync(message: str) -> TaskEnqueueResponse:
        result = await kb_service.process_request(body, current_user.id)
        return TaskEnqueueResponse(task_id=None, message=message, sync=True, result=result)

    try:
        task = await _submit_celery_task(lambda: process_knowledge_task.apply_async(
            args=(current_user.id, body.file_id, body.knowledge_base_id, body.batch_process),
            task_id=new_task_id(current_user.id),
        ))
        logger.info("[async] 知识处理任务已提交 task_id=%s", task.id)
        return TaskEnqueueResponse(task_id=task.id)
    except asyncio.TimeoutError:
        logger.warning("[async] 提交 Celery 任务超时（%ss），降级为同步处理", CELERY_SUBMIT_TIMEOUT)
        return await _run_sync("任务提交超时，已同步执行完成")
    except Exception as e:
        if _is_broker_unavailable(e):
            logger.warning("Celery/Redis 不可用，降级为同步处理: %s", e)
            return await _run_sync("Redis/Celery 不可用，已同步执行完成")
        raise
