"""Domain errors shared by the referral resolver and the ledger.

Every error carries the HTTP status it maps to so the API layer can render
it without re-classifying. ``AlreadyAttributed`` is an acknowledgement rather
than a failure and is never raised out of the resolver.
"""


class ReferralError(Exception):
    """Base class for referral and ledger errors."""

    status_code = 500
    kind = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInput(ReferralError):
    """Malformed or missing code, amount, or identifier."""

    status_code = 400
    kind = "invalid_input"


class InvalidOrder(InvalidInput):
    """Order cannot generate a ledger entry (zero or negative amount)."""

    kind = "invalid_order"


class NotFound(ReferralError):
    """A required record does not exist."""

    status_code = 404
    kind = "not_found"


class ReferralNotFound(NotFound):
    """No candidate source matched the code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__("Referral code not found or not active")


class CustomerNotFound(NotFound):
    def __init__(self, customer_id: int):
        self.customer_id = customer_id
        super().__init__(f"Customer {customer_id} not found")


class RecipientNotFound(NotFound):
    """The referring partner, influencer or customer no longer exists."""

    def __init__(self, recipient_type: str, recipient_id: int):
        self.recipient_type = recipient_type
        self.recipient_id = recipient_id
        super().__init__(f"{recipient_type.capitalize()} {recipient_id} not found")


class Expired(ReferralError):
    """A code matched but is past its expiry."""

    status_code = 410
    kind = "expired"

    def __init__(self, code: str):
        self.code = code
        super().__init__("Referral code has expired")


class AlreadyAttributed(ReferralError):
    """The customer already carries an attribution (first write wins)."""

    status_code = 200
    kind = "already_attributed"

    def __init__(self, customer_id: int):
        self.customer_id = customer_id
        super().__init__(f"Customer {customer_id} is already attributed")


class Conflict(ReferralError):
    """A write collided with an existing row."""

    status_code = 409
    kind = "conflict"


class InsufficientBalance(ReferralError):
    """A credit movement would drive a balance below zero."""

    status_code = 400
    kind = "insufficient_balance"

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credit balance: required {required}, available {available}")


class UpstreamUnavailable(ReferralError):
    """The datastore or a required external service could not be reached."""

    status_code = 503
    kind = "upstream_unavailable"


class DatastoreTimeout(UpstreamUnavailable):
    """A datastore call exceeded its time limit."""

    status_code = 504
    kind = "timeout"
