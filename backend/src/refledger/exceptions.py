"""
Domain exceptions for the referral ledger.

Everything raised by the service layer derives from RefLedgerError so the
HTTP layer can map the whole family in one place.
"""


class RefLedgerError(Exception):
    """Base exception for referral ledger errors"""
    pass


class ValidationError(RefLedgerError):
    """Raised when input is malformed, before any transaction starts"""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ConflictError(RefLedgerError):
    """Raised on a uniqueness violation (duplicate email, referral code)"""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ReferralCodeCollisionError(ConflictError):
    """Raised when a freshly generated referral code is already taken"""

    def __init__(self, message: str = "Referral code collision"):
        super().__init__(message, field="referral_code")


class NotFoundError(RefLedgerError):
    """Raised when the primary subject of an operation does not exist"""
    pass


class InsufficientCreditsError(RefLedgerError):
    """Raised when user has insufficient credits."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credits: required {required}, available {available}")


class TransactionAbortError(RefLedgerError):
    """Raised when the store could not commit (contention, lock timeout).

    Transient: the whole request is safe to retry.
    """
    pass
