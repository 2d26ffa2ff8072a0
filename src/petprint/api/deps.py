"""Service providers for the routers.

Services are cheap to build; each request gets its own, bound to the
application's ``Database``.
"""

from fastapi import Depends

from petprint.ledger.service import LedgerCalculator
from petprint.orders.service import OrderService
from petprint.payments.stripe_service import WebhookProcessor
from petprint.referral.codes import CodeIssuer
from petprint.referral.service import ReferralResolver
from petprint.storage.db import Database, get_database


def get_resolver(database: Database = Depends(get_database)) -> ReferralResolver:
    return ReferralResolver(database)


def get_ledger(database: Database = Depends(get_database)) -> LedgerCalculator:
    return LedgerCalculator(database)


def get_order_service(database: Database = Depends(get_database)) -> OrderService:
    return OrderService(database)


def get_code_issuer(database: Database = Depends(get_database)) -> CodeIssuer:
    return CodeIssuer(database)


def get_webhook_processor(database: Database = Depends(get_database)) -> WebhookProcessor:
    return WebhookProcessor(database)
