"""
知识库相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Any, Dict

from dollyland.models.file import ProcessingStatus, SourceType


class KnowledgeBaseCreate(BaseModel):
    """知识库创建"""
    agent_id: int
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class KnowledgeBaseResponse(BaseModel):
    """知识库响应"""
    id: int
    agent_id: int
    name: str
    description: Optional[str] = None
    file_count: int = 0
    chunk_count: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class KnowledgeBaseListResponse(BaseModel):
    """知识库列表响应"""
    knowledge_bases: List[KnowledgeBaseResponse]
    total: int


class KnowledgeUrlCreate(BaseModel):
    """添加网页来源"""
    url: str = Field(..., min_length=1, max_length=2000)
    process: bool = False


class KnowledgeFileResponse(BaseModel):
    """知识文件响应"""
    id: int
    knowledge_base_id: int
    file_name: str
    file_size: int = 0
    mime_type: Optional[str] = None
    source_type: SourceType
    source_url: Optional[str] = None
    processing_status: ProcessingStatus
    processed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class KnowledgeFileListResponse(BaseModel):
    """知识文件列表响应"""
    files: List[KnowledgeFileResponse]
    total: int


class KnowledgeChunkResponse(BaseModel):
    """知识块响应"""
    id: int
    chunk_index: int
    content: str
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="chunk_metadata")

    class Config:
        from_attributes = True


class KnowledgeChunkListResponse(BaseModel):
    """知识块列表响应（分页）"""
    chunks: List[KnowledgeChunkResponse]
    total: int
    page: int
    page_size: int


class ProcessKnowledgeRequest(BaseModel):
    """知识处理请求：单个文件或整个知识库的待处理文件"""
    file_id: Optional[int] = None
    knowledge_base_id: Optional[int] = None
    batch_process: bool = False


class ProcessResultItem(BaseModel):
    """单个文件处理结果"""
    success: bool
    file_id: int
    chunks_created: Optional[int] = None
    error: Optional[str] = None


class ProcessKnowledgeResponse(BaseModel):
    """知识处理汇总"""
    success: bool = True
    processed: int
    successful: int
    failed: int
    results: List[ProcessResultItem]
