"""Local authentication service (email/password) and registration."""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from refledger.auth.models import UserAccount
from refledger.exceptions import ConflictError, ReferralCodeCollisionError, ValidationError
from refledger.logging_config import get_logger
from refledger.referral.service import referral_service
from refledger.settings import settings
from refledger.storage.db import db

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.password_hash_rounds,
)

# JWT settings
JWT_SECRET_KEY = settings.jwt_secret_key
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = settings.jwt_expire_hours

MIN_PASSWORD_LENGTH = 8


class LocalAuthService:
    """Authentication service for local (email/password) users."""

    def __init__(self):
        """Initialize auth service."""
        self.logger = get_logger(__name__)

    # ==================== PASSWORD ====================

    def _truncate_password(self, password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit).

        Args:
            password: Plain password

        Returns:
            Truncated password
        """
        return password.encode('utf-8')[:72].decode('utf-8', errors='ignore')

    def hash_password(self, password: str) -> str:
        """Hash a password.

        Args:
            password: Plain password

        Returns:
            Hashed password
        """
        return pwd_context.hash(self._truncate_password(password))

    def verify_password(self, password: str, hashed: str) -> bool:
        """Verify a password against hash.

        Args:
            password: Plain password
            hashed: Hashed password

        Returns:
            True if matches
        """
        return pwd_context.verify(self._truncate_password(password), hashed)

    # ==================== REGISTRATION ====================

    def create_user(
        self,
        email: str,
        password: str,
        referral_code: str | None = None,
    ) -> UserAccount:
        """Register a new user.

        Allocates the user's own referral code and, if a known referral
        code was supplied, records a pending referral, all in one
        transaction.

        Args:
            email: User email
            password: Plain password
            referral_code: Optional code of the user who invited them

        Returns:
            Created user account

        Raises:
            ValidationError: If email or password is missing or malformed
            ConflictError: If email already exists
        """
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email is required", field="email")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                field="password",
            )

        # Hash once, outside the retried transaction
        password_hash = self.hash_password(password)

        user = self._insert_user(email, password_hash, referral_code)

        self.logger.info(
            "user_created",
            user_id=user.id,
            email=email,
            referral_code=user.referral_code,
            referred=bool(referral_code),
        )
        return user

    @retry(
        retry=retry_if_exception_type(ReferralCodeCollisionError),
        stop=stop_after_attempt(5),
        reraise=True,
    )
    def _insert_user(
        self,
        email: str,
        password_hash: str,
        referral_code: str | None,
    ) -> UserAccount:
        """Insert the user and link the referral; retried on code collisions."""
        try:
            with db.session() as session:
                # Check if email exists
                existing = session.query(UserAccount.id).filter(
                    UserAccount.email == email
                ).first()

                if existing:
                    raise ConflictError("Email already registered", field="email")

                user = UserAccount(
                    email=email,
                    password_hash=password_hash,
                    referral_code=referral_service.allocate_code(session),
                    credits=0,
                )
                session.add(user)
                session.flush()

                referral_service.link_referral(session, referral_code, user.id)

                session.commit()
                session.refresh(user)
                return user

        except IntegrityError as e:
            # Lost a race on one of the unique columns; find out which
            if self.get_user_by_email(email):
                raise ConflictError("Email already registered", field="email") from e
            self.logger.warning("referral_code_collision", email=email)
            raise ReferralCodeCollisionError() from e

    # ==================== LOGIN ====================

    def authenticate(self, email: str, password: str) -> UserAccount | None:
        """Authenticate a user.

        Args:
            email: User email
            password: Plain password

        Returns:
            User account if valid, None otherwise
        """
        user = self.get_user_by_email(email)

        if not user:
            return None

        if not self.verify_password(password, user.password_hash):
            return None

        self.logger.info("user_authenticated", user_id=user.id)
        return user

    def get_user_by_id(self, user_id: int) -> UserAccount | None:
        """Get user by ID."""
        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.id == user_id,
            ).first()

    def get_user_by_email(self, email: str) -> UserAccount | None:
        """Get user by email."""
        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.email == (email or "").strip().lower(),
            ).first()

    # ==================== JWT TOKENS ====================

    def create_access_token(
        self,
        user: UserAccount,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create JWT access token.

        Args:
            user: User account
            expires_delta: Optional expiration time

        Returns:
            JWT token string
        """
        if expires_delta is None:
            expires_delta = timedelta(hours=JWT_EXPIRE_HOURS)

        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "exp": now + expires_delta,
            "iat": now,
        }

        return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode JWT token.

        Args:
            token: JWT token string

        Returns:
            Token payload or None if invalid
        """
        try:
            return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def get_user_from_token(self, token: str) -> UserAccount | None:
        """Get user from JWT token.

        Args:
            token: JWT token string

        Returns:
            User account or None
        """
        payload = self.verify_token(token)
        if not payload:
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None

        return self.get_user_by_id(int(user_id))


# Singleton instance
auth_service = LocalAuthService()
