"""Credits API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from refledger.api.rate_limit import limiter
from refledger.auth.credits import MAX_LEADERBOARD_SIZE, credit_service
from refledger.auth.middleware import require_auth
from refledger.auth.models import UserAccount
from refledger.ledger.service import MAX_PAGE_SIZE, ledger_service

router = APIRouter(prefix="/credits", tags=["credits"])


# ==================== MODELS ====================


class RedeemRequest(BaseModel):
    """Redeem credits request."""
    amount: int = Field(..., ge=1)
    item: str = Field(..., min_length=1, max_length=255)


class LedgerEntryResponse(BaseModel):
    """One credit movement."""
    id: int
    delta: int
    balance_after: int
    reason: str
    counterpart_user_id: int | None = None
    purchase_id: int | None = None
    created_at: datetime


class LeaderboardEntry(BaseModel):
    """Leaderboard row."""
    user_id: int
    email: str
    credits: int
    referral_code: str


# ==================== ENDPOINTS ====================


@router.get("")
def get_credits(user: UserAccount = Depends(require_auth)):
    """Get current credit balance."""
    return {"credits": credit_service.get_balance(user.id)}


@router.post("/redeem", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def redeem_credits(
    request: Request,
    body: RedeemRequest,
    user: UserAccount = Depends(require_auth),
):
    """Spend credits on an item."""
    redemption = credit_service.redeem_credits(user.id, body.amount, body.item)
    return {"ok": True, "redemption_id": redemption.id}


@router.get("/history", response_model=dict[str, list[LedgerEntryResponse]])
def get_credit_history(
    limit: int = Query(default=100, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    user: UserAccount = Depends(require_auth),
):
    """Get credit history, newest first."""
    entries = ledger_service.history_for(user.id, limit=limit, offset=offset)

    return {
        "history": [
            LedgerEntryResponse(
                id=e.id,
                delta=e.delta,
                balance_after=e.balance_after,
                reason=e.reason.value,
                counterpart_user_id=e.counterpart_user_id,
                purchase_id=e.purchase_id,
                created_at=e.created_at,
            )
            for e in entries
        ]
    }


@router.get("/activity")
def get_activity_feed(user: UserAccount = Depends(require_auth)):
    """Get recent activity as readable sentences."""
    return {"feed": ledger_service.activity_for(user.id)}


@router.get("/leaderboard", response_model=dict[str, list[LeaderboardEntry]])
def get_leaderboard(limit: int = Query(default=10, ge=1, le=MAX_LEADERBOARD_SIZE)):
    """Top users by credits. Public."""
    return {"leaderboard": credit_service.get_leaderboard(limit)}
