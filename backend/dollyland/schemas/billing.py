"""
计费相关Schema
"""
from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Literal


class PlanResponse(BaseModel):
    """套餐响应（价格单位：美分）"""
    id: int
    name: str
    description: Optional[str] = None
    price_monthly: int
    price_yearly: Optional[int] = None
    features: List[str] = []
    conversation_limit: Optional[int] = None

    class Config:
        from_attributes = True


class PlanListResponse(BaseModel):
    """套餐列表响应"""
    plans: List[PlanResponse]
    total: int


class PlanSummary(BaseModel):
    """订阅状态中的套餐摘要"""
    name: str
    features: List[str] = []
    conversation_limit: Optional[int] = None


class SubscriptionStatusResponse(BaseModel):
    """订阅状态（check-subscription）"""
    subscribed: bool
    plan: PlanSummary
    subscription_end: Optional[datetime] = None


class CheckoutRequest(BaseModel):
    """创建结账会话"""
    plan_id: int
    price_type: Literal["monthly", "yearly"] = "monthly"


class CheckoutResponse(BaseModel):
    """结账结果：付费套餐返回 url，免费套餐直接开通"""
    url: Optional[str] = None
    success: Optional[bool] = None
    message: Optional[str] = None


class CheckoutHealthResponse(BaseModel):
    """结账服务健康检查"""
    status: str
    timestamp: datetime
    has_stripe_key: bool
