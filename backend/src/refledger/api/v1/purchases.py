"""Purchase API v1 endpoints."""

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from refledger.api.rate_limit import limiter
from refledger.auth.middleware import require_auth
from refledger.auth.models import UserAccount
from refledger.purchases.service import purchase_service

router = APIRouter(prefix="/purchases", tags=["purchases"])


class PurchaseRequest(BaseModel):
    """Purchase request."""
    amount: float = Field(..., gt=0, description="Purchase amount")


class PurchaseResponse(BaseModel):
    """Result of a purchase."""
    ok: bool = True
    purchase_id: int
    is_first: bool


@router.post("", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_purchase(
    request: Request,
    body: PurchaseRequest,
    user: UserAccount = Depends(require_auth),
):
    """Record a purchase for the current user.

    The first purchase of a referred user pays the referral rewards.
    Referral problems (expired, already paid) never fail the purchase.
    """
    purchase = purchase_service.process_purchase(user.id, body.amount)

    return PurchaseResponse(purchase_id=purchase.id, is_first=purchase.is_first)
