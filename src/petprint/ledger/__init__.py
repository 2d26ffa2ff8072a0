"""Commission and store-credit ledger."""

from petprint.ledger.models import CommissionTier, CreditAdjustment, LedgerEntry, LedgerKind, LedgerStatus
from petprint.ledger.service import LedgerCalculator, LedgerOutcome, LedgerSummary, OutcomeStatus

__all__ = [
    "CommissionTier",
    "CreditAdjustment",
    "LedgerCalculator",
    "LedgerEntry",
    "LedgerKind",
    "LedgerOutcome",
    "LedgerStatus",
    "LedgerSummary",
    "OutcomeStatus",
]
