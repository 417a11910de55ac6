"""
问答相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class ChatMessage(BaseModel):
    """聊天请求"""
    message: str = Field(..., min_length=1, max_length=4000)
    agent_id: int
    conversation_id: Optional[int] = None


class ChatResponse(BaseModel):
    """聊天响应（非流式）"""
    conversation_id: int
    message_id: int
    message: str
    created_at: datetime


class MessageResponse(BaseModel):
    """消息响应"""
    id: int
    role: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationResponse(BaseModel):
    """对话响应"""
    id: int
    agent_id: int
    title: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    messages: List[MessageResponse] = []

    class Config:
        from_attributes = True


class ConversationListResponse(BaseModel):
    """对话列表响应"""
    conversations: List[ConversationResponse]
    total: int
    page: int
    page_size: int
