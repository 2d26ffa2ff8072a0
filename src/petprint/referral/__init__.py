"""Referral attribution for the pet portrait shop.

A referral code may be a partner invite, a partner or customer invitation,
an influencer code or a personal vanity code. ``ReferralResolver`` finds
which one, and records the referring party on the new customer.
"""

from petprint.referral.models import CodeKind, CodeStatus
from petprint.referral.service import AttributionResult, ReferralResolver, normalize_code
from petprint.referral.sources import CodeRecord, Referrer, ResolvedCode

__all__ = [
    "AttributionResult",
    "CodeKind",
    "CodeRecord",
    "CodeStatus",
    "Referrer",
    "ReferralResolver",
    "ResolvedCode",
    "normalize_code",
]
