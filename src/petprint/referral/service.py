"""Referral attribution: resolve a code and record it on a customer."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import update

from petprint.errors import (
    AlreadyAttributed,
    CustomerNotFound,
    Expired,
    InvalidInput,
    ReferralNotFound,
)
from petprint.logging_config import get_logger
from petprint.money import percent_of
from petprint.referral.sources import RateDefaults, ReferralSource, ResolvedCode, default_sources
from petprint.settings import settings
from petprint.storage.db import Database
from petprint.storage.models import Customer, ReferrerType

logger = get_logger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z0-9]{4,32}$")


@dataclass(frozen=True)
class AttributionResult:
    """Outcome of an attribution attempt.

    ``attributed`` is False when the customer already carried an
    attribution; ``resolved`` is returned either way for display.
    """
    customer_id: int
    resolved: ResolvedCode
    attributed: bool
    discount_applied: int = 0


def normalize_code(code: str | None) -> str:
    """Upper-case and validate a referral code.

    Raises:
        InvalidInput: If the code is empty or not 4-32 letters/digits
    """
    if code is None or not str(code).strip():
        raise InvalidInput("Referral code is required")
    normalized = str(code).strip().upper()
    if not CODE_PATTERN.match(normalized):
        raise InvalidInput("Referral code must be 4-32 letters or digits")
    return normalized


class ReferralResolver:
    """Resolves referral codes against the ordered candidate sources.

    Operations:
    - resolve: first matching source wins, expired matches are terminal
    - verify: resolve and count a scan
    - attribute: resolve and write the attribution onto a customer once
    """

    def __init__(
        self,
        database: Database,
        sources: list[ReferralSource] | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.database = database
        self.sources = sources if sources is not None else default_sources(RateDefaults.from_settings(settings))
        self.clock = clock
        self.logger = get_logger(__name__)

    def _match(self, session, code: str) -> tuple[ReferralSource, ResolvedCode]:
        for source in self.sources:
            resolved = source.try_resolve(session, code)
            if resolved is None:
                continue

            if resolved.is_expired(self.clock()):
                self.logger.info("referral_expired", code=code, kind=source.kind.value)
                raise Expired(code)

            self.logger.info(
                "referral_resolved",
                code=code,
                kind=source.kind.value,
                referrer_type=resolved.referrer.type.value,
                referrer_id=resolved.referrer.id,
            )
            return source, resolved

        self.logger.info("referral_not_found", code=code)
        raise ReferralNotFound(code)

    def resolve(self, code: str) -> ResolvedCode:
        """Resolve a code to its record and referrer.

        Args:
            code: Referral code, any case

        Returns:
            The first matching source's resolution

        Raises:
            InvalidInput: Malformed code
            ReferralNotFound: No source matched
            Expired: The matching code is past its expiry
            UpstreamUnavailable: A lookup failed
        """
        normalized = normalize_code(code)
        with self.database.session() as session:
            _, resolved = self._match(session, normalized)
            return resolved

    def verify(self, code: str) -> ResolvedCode:
        """Resolve a code and count the scan against the matched row."""
        normalized = normalize_code(code)
        with self.database.session() as session:
            source, resolved = self._match(session, normalized)
            source.record_scan(session, resolved.record.id)
            return resolved

    def attribute(
        self,
        customer_id: int,
        code: str,
        customer_email: str | None = None,
        order_subtotal: int | None = None,
    ) -> AttributionResult:
        """Record a referral on a customer, first write wins.

        Args:
            customer_id: Customer being attributed
            code: Referral code used at signup or checkout
            customer_email: Optional email the caller believes the customer has
            order_subtotal: Subtotal in pence when attributing at checkout

        Returns:
            AttributionResult (attributed=False if the customer already had one)
        """
        normalized = normalize_code(code)
        if not isinstance(customer_id, int) or customer_id <= 0:
            raise InvalidInput("customer_id must be a positive integer")
        if order_subtotal is not None and order_subtotal < 0:
            raise InvalidInput("order_subtotal cannot be negative")

        with self.database.session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise CustomerNotFound(customer_id)
            if customer_email and customer_email.strip().lower() != customer.email:
                raise InvalidInput("customer_email does not match the customer record")

            source, resolved = self._match(session, normalized)
            referrer = resolved.referrer
            # An existing attribution makes any code a no-op, including the customer's own
            is_own_code = referrer.type == ReferrerType.CUSTOMER and referrer.id == customer.id
            if is_own_code and not customer.is_attributed:
                raise InvalidInput("Customers cannot use their own referral code")

            discount = percent_of(order_subtotal, resolved.record.discount_rate) if order_subtotal else 0

            try:
                self._write_attribution(session, customer, resolved, discount)
            except AlreadyAttributed:
                self.logger.info(
                    "referral_already_attributed",
                    customer_id=customer_id,
                    code=normalized,
                    existing_code=customer.referral_code_used,
                )
                return AttributionResult(customer_id=customer_id, resolved=resolved, attributed=False)

            source.record_conversion(session, resolved.record.id)

        self.logger.info(
            "referral_attributed",
            customer_id=customer_id,
            code=normalized,
            referrer_type=referrer.type.value,
            referrer_id=referrer.id,
            commission_rate=str(resolved.record.commission_rate),
            discount_applied=discount,
        )
        return AttributionResult(
            customer_id=customer_id,
            resolved=resolved,
            attributed=True,
            discount_applied=discount,
        )

    def _write_attribution(self, session, customer: Customer, resolved: ResolvedCode, discount: int) -> None:
        # Conditional update: concurrent signups cannot both win
        result = session.execute(
            update(Customer)
            .where(Customer.id == customer.id, Customer.referral_type.is_(None))
            .values(
                referral_type=resolved.referrer.type.value,
                referrer_id=resolved.referrer.id,
                referral_source=resolved.record.kind.value,
                referral_code_used=resolved.record.code,
                referral_discount_rate=resolved.record.discount_rate,
                referral_discount_applied=discount,
                referral_commission_rate=resolved.record.commission_rate,
                referral_trailing_rate=resolved.record.trailing_rate,
                referral_applied_at=self.clock(),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AlreadyAttributed(customer.id)
