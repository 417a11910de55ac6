"""
Celery 应用：知识文件的异步抓取、解析与切分
broker 与结果后端未单独配置时复用 REDIS_URL。
"""
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from celery import Celery

from dollyland.core.config import settings


def redis_url_for_celery(url: str) -> str:
    """rediss:// 必须显式带 ssl_cert_reqs，缺省补 CERT_NONE"""
    if not url.lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    query.setdefault("ssl_cert_reqs", ["CERT_NONE"])
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


celery_app = Celery(
    "dollyland",
    broker=redis_url_for_celery(settings.CELERY_BROKER_URL or settings.REDIS_URL),
    backend=redis_url_for_celery(settings.CELERY_RESULT_BACKEND or settings.REDIS_URL),
    include=["dollyland.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_concurrency=settings.CELERY_WORKER_CONCURRENCY,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    # 执行中的任务状态为 STARTED
    task_track_started=True,
    result_expires=settings.CELERY_RESULT_EXPIRES,
)
