"""Billing exception hierarchy.

Every failure the engine surfaces to a caller is one of these types. Each
carries the HTTP status the API layer answers with, so routers never need
their own mapping tables.
"""

from typing import Any


class BillingError(Exception):
    """Base exception for all billing engine errors."""

    status_code = 400


class NotFoundError(BillingError):
    """Entity not found (or not usable, e.g. an inactive catalog entry).

    Attributes:
        entity_type: Type of entity (e.g., 'Subscription', 'CreditValue')
        entity_id: Identifier that was looked up
    """

    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidUnitsError(BillingError):
    """Requested units fall outside a service's min/max bounds."""

    def __init__(self, message: str, units: int):
        super().__init__(message)
        self.units = units


class InvalidCatalogEntryError(BillingError):
    """A catalog entry violates its pricing invariants."""

    status_code = 422


class InsufficientCreditsError(BillingError):
    """Raised when a subscription cannot afford a consumption."""

    status_code = 402

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credits: required {required}, available {available}")


class InvalidOrExpiredCreditError(BillingError):
    """Referral credit is not ACTIVE, already past expiry, or not owned by the subscription."""


class AlreadyCompletedError(BillingError):
    """Referral was already completed."""

    status_code = 409


class AlreadyAppliedError(BillingError):
    """Referral reward was already applied."""

    status_code = 409


class ReferralNotCompletedError(BillingError):
    """Reward requested for a referral that has not completed."""


class DuplicateSubscriptionError(BillingError):
    """Client already holds a live subscription."""

    status_code = 409

    def __init__(self, client_id: int):
        super().__init__(f"Client {client_id} already has an active subscription")
        self.client_id = client_id


class SubscriptionInactiveError(BillingError):
    """Subscription is not in a state that allows consumption."""

    status_code = 403


class InvalidStatusTransitionError(BillingError):
    """Illegal state machine transition.

    Attributes:
        current: Status the entity is in
        target: Status that was requested
    """

    status_code = 409

    def __init__(self, entity_type: str, current: Any, target: Any):
        super().__init__(f"{entity_type} cannot move from {current} to {target}")
        self.entity_type = entity_type
        self.current = current
        self.target = target


class DiscountNotApplicableError(BillingError):
    """Discount exists but cannot be applied to this request."""

    status_code = 422


class ReferralCodeExhaustedError(BillingError):
    """No free referral code found within the configured attempts."""

    status_code = 503
