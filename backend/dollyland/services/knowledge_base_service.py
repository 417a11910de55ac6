"""
知识库服务：知识库管理、文件/网页来源录入、内容提取与切分
"""
import asyncio
import io
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.config import settings
from dollyland.models.agent import Agent
from dollyland.models.chunk import KnowledgeChunk
from dollyland.models.file import KnowledgeFile, ProcessingStatus, SourceType
from dollyland.models.knowledge_base import KnowledgeBase
from dollyland.schemas.knowledge_base import (
    KnowledgeBaseCreate,
    KnowledgeBaseResponse,
    ProcessKnowledgeRequest,
    ProcessKnowledgeResponse,
    ProcessResultItem,
)
from dollyland.services import scrape_service
from dollyland.services.file_security_service import get_extension, validate_filename, validate_file_content
from dollyland.services.file_service import FileService, build_object_name

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

EMPTY_CONTENT_ERROR = "未能从文件中提取内容"


def chunk_content(text: str, chunk_size: Optional[int] = None, min_length: Optional[int] = None) -> List[str]:
    """按句子贪心拼块：超出 chunk_size 时另起新块，过短的块丢弃"""
    size = chunk_size or settings.KNOWLEDGE_CHUNK_SIZE
    min_len = settings.KNOWLEDGE_MIN_CHUNK_LENGTH if min_length is None else min_length
    pieces = [p for p in _SENTENCE_SPLIT_RE.split(text or "") if p.strip()]
    chunks: List[str] = []
    current = ""
    for piece in pieces:
        if len(current) + len(piece) > size and current:
            chunks.append(current.strip())
            current = piece.strip() + "."
        else:
            current += (" " if current else "") + piece.strip() + "."
    if current.strip():
        chunks.append(current.strip())
    return [c for c in chunks if len(c) > min_len]


def extract_text(content: bytes, file_type: str) -> str:
    """从文件内容提取纯文本（pdf、docx、pptx、xlsx、html，其余按 UTF-8 文本）"""
    ft = (file_type or "").lower()
    if ft == "pdf":
        try:
            from PyPDF2 import PdfReader
            reader = PdfReader(io.BytesIO(content))
            return "\n".join((page.extract_text() or "").strip() for page in reader.pages).strip()
        except Exception as e:
            logger.warning("pdf 文本提取失败: %s", e)
            return ""
    if ft == "docx":
        try:
            from docx import Document
            doc = Document(io.BytesIO(content))
            parts = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
            for table in doc.tables:
                for row in table.rows:
                    parts.extend(cell.text.strip() for cell in row.cells if cell.text.strip())
            return "\n".join(parts).strip()
        except Exception as e:
            logger.warning("docx 文本提取失败: %s", e)
            return ""
    if ft == "pptx":
        try:
            from pptx import Presentation
            prs = Presentation(io.BytesIO(content))
            parts = []
            for slide in prs.slides:
                for shape in slide.shapes:
                    if getattr(shape, "text", None) and shape.text.strip():
                        parts.append(shape.text.strip())
                    if shape.has_table:
                        for row in shape.table.rows:
                            parts.extend(cell.text.strip() for cell in row.cells if cell.text and cell.text.strip())
            return "\n".join(parts).strip()
        except Exception as e:
            logger.warning("pptx 文本提取失败: %s", e)
            return ""
    if ft == "xlsx":
        try:
            from openpyxl import load_workbook
            wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
            parts = []
            for name in wb.sheetnames:
                for row in wb[name].iter_rows(values_only=True):
                    parts.extend(str(cell).strip() for cell in row if cell is not None and str(cell).strip())
            wb.close()
            return "\n".join(parts).strip()
        except Exception as e:
            logger.warning("xlsx 文本提取失败: %s", e)
            return ""
    text = content.decode("utf-8", errors="ignore")
    if ft in ("html", "htm"):
        return scrape_service.clean_html(text)
    return text.strip()


class KnowledgeBaseService:
    """知识库服务类"""

    def __init__(self, db: AsyncSession, file_service: Optional[FileService] = None):
        self.db = db
        self._file_service = file_service

    @property
    def file_service(self) -> FileService:
        if self._file_service is None:
            self._file_service = FileService()
        return self._file_service

    async def _remove_objects(self, paths: List[str]) -> None:
        """记录删除后清理存储对象；存储异常只记日志"""
        if not paths:
            return
        try:
            await asyncio.to_thread(self.file_service.remove_many, paths)
        except Exception as e:
            logger.warning("清理 MinIO 对象失败（%s 个）: %s", len(paths), e)

    # ---------- 知识库 ----------

    async def create_knowledge_base(self, kb_data: KnowledgeBaseCreate, user_id: int) -> KnowledgeBase:
        agent = (await self.db.execute(
            select(Agent.id).where(Agent.id == kb_data.agent_id, Agent.user_id == user_id)
        )).scalar_one_or_none()
        if agent is None:
            raise LookupError("智能体不存在")
        kb = KnowledgeBase(
            user_id=user_id,
            agent_id=kb_data.agent_id,
            name=kb_data.name,
            description=kb_data.description,
        )
        self.db.add(kb)
        await self.db.commit()
        await self.db.refresh(kb)
        return kb

    async def get_knowledge_base(self, kb_id: int, user_id: int) -> Optional[KnowledgeBase]:
        result = await self.db.execute(
            select(KnowledgeBase).where(KnowledgeBase.id == kb_id, KnowledgeBase.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def _counts(self, kb_id: int) -> Tuple[int, int]:
        file_count = (await self.db.execute(
            select(func.count()).select_from(KnowledgeFile).where(KnowledgeFile.knowledge_base_id == kb_id)
        )).scalar() or 0
        chunk_count = (await self.db.execute(
            select(func.count()).select_from(KnowledgeChunk).where(KnowledgeChunk.knowledge_base_id == kb_id)
        )).scalar() or 0
        return file_count, chunk_count

    async def to_response(self, kb: KnowledgeBase) -> KnowledgeBaseResponse:
        file_count, chunk_count = await self._counts(kb.id)
        return KnowledgeBaseResponse(
            id=kb.id,
            agent_id=kb.agent_id,
            name=kb.name,
            description=kb.description,
            file_count=file_count,
            chunk_count=chunk_count,
            created_at=kb.created_at,
        )

    async def list_knowledge_bases(self, user_id: int, agent_id: Optional[int] = None) -> List[KnowledgeBaseResponse]:
        cond = [KnowledgeBase.user_id == user_id]
        if agent_id:
            cond.append(KnowledgeBase.agent_id == agent_id)
        result = await self.db.execute(
            select(KnowledgeBase).where(*cond).order_by(KnowledgeBase.created_at.desc(), KnowledgeBase.id.desc())
        )
        return [await self.to_response(kb) for kb in result.scalars().all()]

    async def delete_knowledge_base(self, kb_id: int, user_id: int) -> None:
        """删除知识库及其文件、知识块，并清理对象存储"""
        kb = await self.get_knowledge_base(kb_id, user_id)
        if not kb:
            raise LookupError("知识库不存在")
        paths = (await self.db.execute(
            select(KnowledgeFile.file_path).where(
                KnowledgeFile.knowledge_base_id == kb_id,
                KnowledgeFile.file_path.is_not(None),
            )
        )).scalars().all()
        await self.db.execute(delete(KnowledgeChunk).where(KnowledgeChunk.knowledge_base_id == kb_id))
        await self.db.execute(delete(KnowledgeFile).where(KnowledgeFile.knowledge_base_id == kb_id))
        await self.db.delete(kb)
        await self.db.commit()
        await self._remove_objects(list(paths))
        logger.info("已删除知识库 %s（%s 个存储对象）", kb_id, len(paths))

    # ---------- 来源录入 ----------

    async def upload_file(
        self,
        kb: KnowledgeBase,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> KnowledgeFile:
        """校验并上传文件到对象存储，创建 pending 状态的知识文件"""
        validate_filename(filename)
        ext = get_extension(filename)
        validate_file_content(content, ext)
        object_name = build_object_name(kb.user_id, kb.id, filename.strip())
        mime_type = content_type or "application/octet-stream"
        await asyncio.to_thread(self.file_service.put, object_name, content, mime_type)
        kf = KnowledgeFile(
            user_id=kb.user_id,
            knowledge_base_id=kb.id,
            file_name=filename.strip(),
            file_path=object_name,
            file_size=len(content),
            mime_type=mime_type,
            source_type=SourceType.FILE,
            processing_status=ProcessingStatus.PENDING,
        )
        self.db.add(kf)
        await self.db.commit()
        await self.db.refresh(kf)
        return kf

    async def add_url(self, kb: KnowledgeBase, url: str) -> KnowledgeFile:
        if not scrape_service.is_valid_url(url):
            raise ValueError("仅支持 http/https 链接")
        source_url = scrape_service.normalize_url(url)
        kf = KnowledgeFile(
            user_id=kb.user_id,
            knowledge_base_id=kb.id,
            file_name=scrape_service.display_name(url.strip())[:255],
            file_path=None,
            file_size=0,
            mime_type="text/html",
            source_type=SourceType.URL,
            source_url=source_url,
            processing_status=ProcessingStatus.PENDING,
        )
        self.db.add(kf)
        await self.db.commit()
        await self.db.refresh(kf)
        return kf

    async def get_file(self, file_id: int, user_id: int) -> Optional[KnowledgeFile]:
        result = await self.db.execute(
            select(KnowledgeFile).where(KnowledgeFile.id == file_id, KnowledgeFile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_files(self, kb_id: int) -> List[KnowledgeFile]:
        result = await self.db.execute(
            select(KnowledgeFile)
            .where(KnowledgeFile.knowledge_base_id == kb_id)
            .order_by(KnowledgeFile.created_at.desc(), KnowledgeFile.id.desc())
        )
        return list(result.scalars().all())

    async def delete_file(self, file_id: int, user_id: int) -> None:
        kf = await self.get_file(file_id, user_id)
        if not kf:
            raise LookupError("文件不存在")
        path = kf.file_path
        await self.db.execute(delete(KnowledgeChunk).where(KnowledgeChunk.knowledge_file_id == file_id))
        await self.db.delete(kf)
        await self.db.commit()
        if path:
            await self._remove_objects([path])

    async def list_chunks(self, file_id: int, page: int = 1, page_size: int = 20) -> Tuple[List[KnowledgeChunk], int]:
        total = (await self.db.execute(
            select(func.count()).select_from(KnowledgeChunk).where(KnowledgeChunk.knowledge_file_id == file_id)
        )).scalar() or 0
        result = await self.db.execute(
            select(KnowledgeChunk)
            .where(KnowledgeChunk.knowledge_file_id == file_id)
            .order_by(KnowledgeChunk.chunk_index)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    # ---------- 处理 ----------

    async def _set_status(self, kf: KnowledgeFile, status: ProcessingStatus) -> None:
        kf.processing_status = status
        await self.db.commit()

    async def _extract(self, kf: KnowledgeFile) -> Tuple[str, str]:
        """返回 (title, content)"""
        if kf.source_type == SourceType.URL:
            page = await scrape_service.scrape_url(kf.source_url)
            return page.title, page.content
        if not kf.file_path:
            raise ValueError("文件存储路径缺失")
        data = await asyncio.to_thread(self.file_service.get, kf.file_path)
        return kf.file_name, extract_text(data, get_extension(kf.file_name))

    async def process_file(self, kf: KnowledgeFile) -> int:
        """处理单个知识文件，返回生成的知识块数；失败时标记 failed 并抛出"""
        file_id = kf.id
        try:
            await self._set_status(kf, ProcessingStatus.PROCESSING)
            title, content = await self._extract(kf)
            if len((content or "").strip()) < settings.KNOWLEDGE_MIN_CONTENT_LENGTH:
                raise ValueError(EMPTY_CONTENT_ERROR)

            await self._set_status(kf, ProcessingStatus.CHUNKING)
            await self.db.execute(delete(KnowledgeChunk).where(KnowledgeChunk.knowledge_file_id == file_id))
            pieces = chunk_content(content, settings.KNOWLEDGE_CHUNK_SIZE)
            source_type = kf.source_type.value if isinstance(kf.source_type, SourceType) else kf.source_type
            for idx, piece in enumerate(pieces):
                self.db.add(KnowledgeChunk(
                    user_id=kf.user_id,
                    knowledge_base_id=kf.knowledge_base_id,
                    knowledge_file_id=file_id,
                    chunk_index=idx,
                    content=piece,
                    chunk_metadata={
                        "title": title,
                        "source_type": source_type,
                        "source_url": kf.source_url,
                        "file_name": kf.file_name,
                        "chunk_size": len(piece),
                        "total_chunks": len(pieces),
                    },
                ))
            kf.processing_status = ProcessingStatus.COMPLETED
            kf.processed_content = content
            kf.processed_at = datetime.now(timezone.utc)
            await self.db.commit()
            logger.info("知识文件 %s 处理完成，生成 %s 个知识块", file_id, len(pieces))
            return len(pieces)
        except Exception as e:
            logger.error("知识文件 %s 处理失败: %s", file_id, e)
            await self.db.rollback()
            await self.db.execute(
                KnowledgeFile.__table__.update()
                .where(KnowledgeFile.id == file_id)
                .values(processing_status=ProcessingStatus.FAILED.value, processed_content=f"处理失败: {e}")
            )
            await self.db.commit()
            raise

    async def process_request(self, req: ProcessKnowledgeRequest, user_id: int) -> ProcessKnowledgeResponse:
        """按请求处理单个文件或整个知识库的待处理文件"""
        if req.batch_process and req.knowledge_base_id:
            kb = await self.get_knowledge_base(req.knowledge_base_id, user_id)
            if not kb:
                raise LookupError("知识库不存在")
            result = await self.db.execute(
                select(KnowledgeFile)
                .where(
                    KnowledgeFile.knowledge_base_id == kb.id,
                    KnowledgeFile.processing_status == ProcessingStatus.PENDING,
                )
                .order_by(KnowledgeFile.id)
            )
            files = list(result.scalars().all())
        elif req.file_id:
            kf = await self.get_file(req.file_id, user_id)
            if not kf:
                raise LookupError("文件不存在")
            files = [kf]
        else:
            raise ValueError("需要提供 file_id 或 knowledge_base_id")

        file_ids = [f.id for f in files]
        results: List[ProcessResultItem] = []
        for file_id in file_ids:
            kf = await self.get_file(file_id, user_id)
            if kf is None:
                continue
            try:
                created = await self.process_file(kf)
                results.append(ProcessResultItem(success=True, file_id=file_id, chunks_created=created))
            except Exception as e:
                results.append(ProcessResultItem(success=False, file_id=file_id, error=str(e)))
        successful = sum(1 for r in results if r.success)
        return ProcessKnowledgeResponse(
            success=True,
            processed=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )
