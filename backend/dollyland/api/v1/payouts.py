"""
创作者收益与提现API
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.schemas.payout import (
    EarningsSummary,
    PayoutCreate,
    PayoutCreateResponse,
    PayoutResponse,
    PayoutListResponse,
)
from dollyland.schemas.auth import UserResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.api.deps import get_client_ip, get_request_id
from dollyland.services.payout_service import PayoutService, PAYOUT_SUBMITTED_MESSAGE
from dollyland.services.audit_service import log_audit

router = APIRouter()


@router.get("/earnings", response_model=EarningsSummary)
async def get_earnings(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    return await PayoutService(db).get_earnings(current_user.id)


@router.post("", response_model=PayoutCreateResponse, status_code=status.HTTP_201_CREATED)
async def request_payout(
    body: PayoutCreate,
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """提交提现申请（不低于最低金额，且不超过待提现收益）"""
    try:
        payout = await PayoutService(db).request_payout(current_user.id, body.amount_cents)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await log_audit(
        db, current_user.id, "request_payout", "payout", payout.id,
        {"amount_cents": payout.amount_cents}, get_client_ip(request), get_request_id(request),
        request.headers.get("user-agent"),
    )
    return PayoutCreateResponse(success=True, payout_id=payout.id, message=PAYOUT_SUBMITTED_MESSAGE)


@router.get("", response_model=PayoutListResponse)
async def list_payouts(
    page: int = 1,
    page_size: int = 20,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    payouts, total = await PayoutService(db).list_payouts(current_user.id, max(page, 1), min(max(page_size, 1), 100))
    return PayoutListResponse(payouts=[PayoutResponse.model_validate(p) for p in payouts], total=total)
