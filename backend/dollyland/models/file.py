"""
知识文件模型
"""
from sqlalchemy import Column, Integer, String, Text, BigInteger, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
import enum
from dollyland.core.database import Base


class ProcessingStatus(str, enum.Enum):
    """处理状态"""
    PENDING = "pending"
    PROCESSING = "processing"
    CHUNKING = "chunking"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceType(str, enum.Enum):
    """来源类型"""
    FILE = "file"
    URL = "url"


def _enum_values(enum_cls):
    return [x.value for x in enum_cls]


class KnowledgeFile(Base):
    """知识文件表：上传的文件或网页 URL"""
    __tablename__ = "knowledge_files"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    knowledge_base_id = Column(Integer, ForeignKey("knowledge_bases.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=True)  # MinIO 对象名，URL 来源为空
    file_size = Column(BigInteger, default=0)
    mime_type = Column(String(100), nullable=True)
    source_type = Column(
        SQLEnum(SourceType, values_callable=_enum_values, native_enum=False, length=10),
        default=SourceType.FILE,
        nullable=False,
    )
    source_url = Column(String(2000), nullable=True)
    processing_status = Column(
        SQLEnum(ProcessingStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=ProcessingStatus.PENDING,
        nullable=False,
        index=True,
    )
    processed_content = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
