"""Authentication API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field

from refledger.api.rate_limit import limiter
from refledger.auth.local import JWT_EXPIRE_HOURS, auth_service
from refledger.auth.middleware import require_auth
from refledger.auth.models import TokenResponse, User, UserAccount
from refledger.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ==================== MODELS ====================


class RegisterRequest(BaseModel):
    """User registration request."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    referral_code: str | None = Field(default=None, max_length=20)  # Optional referral code


class LoginRequest(BaseModel):
    """User login request."""
    email: EmailStr
    password: str


def _token_response(user: UserAccount) -> TokenResponse:
    return TokenResponse(
        access_token=auth_service.create_access_token(user),
        token_type="bearer",
        expires_in=JWT_EXPIRE_HOURS * 3600,
        user=User.model_validate(user),
    )


# ==================== ENDPOINTS ====================


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register(request: Request, body: RegisterRequest):
    """Register a new user account.

    The new user gets their own referral code. If ``referral_code``
    belongs to an existing user, a pending referral is recorded; unknown
    codes are ignored.
    """
    user = auth_service.create_user(
        email=body.email,
        password=body.password,
        referral_code=body.referral_code,
    )

    logger.info("user_registered", user_id=user.id, with_code=bool(body.referral_code))

    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
def login(request: Request, body: LoginRequest):
    """Login with email and password."""
    user = auth_service.authenticate(body.email, body.password)

    if not user:
        logger.warning(
            "login_failed",
            email=body.email,
            ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    return _token_response(user)


@router.get("/me", response_model=User)
def get_current_user_info(user: UserAccount = Depends(require_auth)):
    """Get current user information."""
    return User.model_validate(user)
