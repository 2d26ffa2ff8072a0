"""Referral attribution and commission ledger for the pet portrait shop."""

__version__ = "1.0.0"
