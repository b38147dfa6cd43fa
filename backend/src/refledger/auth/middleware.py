"""Authentication dependencies for FastAPI."""

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from refledger.auth.local import auth_service
from refledger.auth.models import UserAccount
from refledger.logging_config import get_logger

logger = get_logger(__name__)

# Bearer JWT issued by /auth/register and /auth/login
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> UserAccount | None:
    """Resolve the bearer token to a user, if there is a valid one.

    The user is also stored on ``request.state`` and bound to the logging
    context, so every event logged while serving the request carries
    ``user_id``.
    """
    if not credentials:
        return None

    user = auth_service.get_user_from_token(credentials.credentials)
    if not user:
        logger.debug("bearer_token_rejected", path=request.url.path)
        return None

    request.state.user = user
    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


def require_auth(user: UserAccount | None = Depends(get_current_user)) -> UserAccount:
    """Require authentication - raises 401 if not authenticated."""
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
