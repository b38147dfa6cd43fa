"""Referral rewards ledger: referral codes, first-purchase rewards and credit redemptions."""

__version__ = "1.0.0"
