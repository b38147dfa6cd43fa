"""Referral API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from refledger.api.rate_limit import limiter
from refledger.auth.local import auth_service
from refledger.auth.middleware import require_auth
from refledger.auth.models import UserAccount
from refledger.logging_config import get_logger
from refledger.purchases.service import REWARD_CREDITS
from refledger.referral.service import referral_service

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class ReferralResponse(BaseModel):
    """A user referred by the current user."""
    id: int
    referred_user_id: int
    referred_email: str
    status: str
    credited: bool
    expiry_date: datetime
    created_at: datetime | None = None


class ReferrerResponse(BaseModel):
    """Who referred the current user, and where that referral stands."""
    referrer_id: int
    referrer_email: str | None = None
    status: str
    credited: bool
    expiry_date: datetime


class MyReferrerResponse(BaseModel):
    """Wrapper so users without a referrer get an explicit null."""
    referrer: ReferrerResponse | None = None


class ReferralStatsResponse(BaseModel):
    """Response with referral statistics."""
    code: str
    link: str
    total_referred: int
    converted_count: int
    total_credits: int


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    bonus_credits: int = REWARD_CREDITS


# ==================== ENDPOINTS ====================


@router.get("/mine", response_model=dict[str, list[ReferralResponse]])
def get_my_referrals(user: UserAccount = Depends(require_auth)):
    """List users who signed up with the current user's code."""
    return {"referrals": referral_service.get_referrals_for_referrer(user.id)}


@router.get("/referrer", response_model=MyReferrerResponse)
def get_my_referrer(user: UserAccount = Depends(require_auth)):
    """Get the referral through which the current user signed up, if any."""
    referral = referral_service.get_referral_for_referred(user.id)
    if not referral:
        return MyReferrerResponse()

    referrer = auth_service.get_user_by_id(referral.referrer_id)

    return MyReferrerResponse(
        referrer=ReferrerResponse(
            referrer_id=referral.referrer_id,
            referrer_email=referrer.email if referrer else None,
            status=referral.status.value,
            credited=referral.credited,
            expiry_date=referral.expiry_date,
        )
    )


@router.get("/stats", response_model=ReferralStatsResponse)
def get_referral_stats(user: UserAccount = Depends(require_auth)):
    """Get referral statistics for current user.

    Includes:
    - Share link with the user's code
    - Number of referred users and how many converted
    - Current credit balance
    """
    return ReferralStatsResponse(**referral_service.get_referral_stats(user.id))


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
def validate_referral_code(request: Request, body: ValidateCodeRequest):
    """Check a referral code before signup."""
    referrer = referral_service.validate_code(body.code)

    return ValidateCodeResponse(valid=referrer is not None)
