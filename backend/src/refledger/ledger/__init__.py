"""Append-only credit ledger."""

from refledger.ledger.models import LedgerEntry, LedgerReason
from refledger.ledger.service import LedgerService, ledger_service

__all__ = ["LedgerEntry", "LedgerReason", "LedgerService", "ledger_service"]
