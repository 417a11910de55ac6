"""
文件存储服务：知识文件在 MinIO 中的上传、下载、删除
"""
import io
import logging
import uuid
from typing import Iterable, Optional

from minio import Minio
from minio.error import S3Error

from dollyland.core.config import settings

logger = logging.getLogger(__name__)

_minio_client: Optional[Minio] = None


def get_minio_client() -> Minio:
    """获取 MinIO 客户端（懒加载，首次使用时确保 bucket 存在）"""
    global _minio_client
    if _minio_client is None:
        client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        try:
            if not client.bucket_exists(settings.MINIO_BUCKET_NAME):
                client.make_bucket(settings.MINIO_BUCKET_NAME)
        except S3Error as e:
            logger.warning("MinIO bucket 检查失败: %s", e)
        _minio_client = client
    return _minio_client


def build_object_name(user_id: int, kb_id: int, filename: str) -> str:
    """对象名：{user_id}/{kb_id}/{uuid}_{filename}"""
    return f"{user_id}/{kb_id}/{uuid.uuid4().hex}_{filename}"


class FileService:
    """文件存储服务类（同步 MinIO SDK，调用方用 asyncio.to_thread 包装）"""

    def __init__(self, client: Optional[Minio] = None):
        self.client = client or get_minio_client()
        self.bucket = settings.MINIO_BUCKET_NAME

    def put(self, object_name: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        self.client.put_object(
            self.bucket,
            object_name,
            io.BytesIO(content),
            length=len(content),
            content_type=content_type,
        )
        return object_name

    def get(self, object_name: str) -> bytes:
        response = self.client.get_object(self.bucket, object_name)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def remove(self, object_name: str) -> None:
        try:
            self.client.remove_object(self.bucket, object_name)
        except S3Error as e:
            logger.warning("删除 MinIO 对象失败 %s: %s", object_name, e)

    def remove_many(self, object_names: Iterable[str]) -> None:
        for name in object_names:
            if name:
                self.remove(name)


def remove_objects_quietly(object_names: Iterable[str]) -> None:
    """数据库记录已删除后的对象清理；存储不可用时只记日志"""
    names = [n for n in object_names if n]
    if not names:
        return
    try:
        FileService().remove_many(names)
    except Exception as e:
        logger.warning("清理 MinIO 对象失败（%s 个）: %s", len(names), e)
