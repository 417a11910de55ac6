"""
Celery 任务模块：知识文件异步处理
"""
from dollyland.tasks.knowledge_tasks import process_knowledge_task

__all__ = [
    "process_knowledge_task",
]
