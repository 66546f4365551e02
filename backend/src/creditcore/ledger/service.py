"""Credit ledger: balances and atomic consumption for subscriptions."""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from creditcore.catalog.models import CreditValue
from creditcore.catalog.service import calculate_cost, ceil_credits
from creditcore.discounts.engine import DiscountEngine
from creditcore.errors import (
    InsufficientCreditsError,
    InvalidOrExpiredCreditError,
    NotFoundError,
    SubscriptionInactiveError,
)
from creditcore.ledger.models import (
    CreditBalance,
    CreditConsumption,
    CreditConsumptionResult,
    CreditType,
    ReferralCredit,
    ReferralCreditStatus,
)
from creditcore.logging_config import get_logger
from creditcore.storage.db import Database, db, lock_row, utcnow
from creditcore.subscriptions.models import CONSUMING_STATUSES, Subscription

logger = get_logger(__name__)


def base_allotment(subscription: Subscription) -> int:
    """Base credits of the current period: custom override, else the price's credits."""
    if subscription.custom_credits is not None:
        return subscription.custom_credits
    return subscription.price.credits if subscription.price else 0


def _live_referral_credits(session: Session, subscription_id: int, now: datetime):
    """ACTIVE, unexpired referral credits, soonest to expire first."""
    return session.query(ReferralCredit).filter(
        ReferralCredit.subscription_id == subscription_id,
        ReferralCredit.status == ReferralCreditStatus.ACTIVE,
        ReferralCredit.expires_at > now,
    ).order_by(ReferralCredit.expires_at, ReferralCredit.id)


def compute_balance(session: Session, subscription: Subscription, now: datetime | None = None) -> CreditBalance:
    """Balance of ``subscription`` as seen inside ``session``.

    Referral credits count only while ACTIVE and unexpired, and so does what
    has been drawn from them. A credit that expires or is used up leaves both
    sums, so the referral pool can never go below zero.
    """
    now = now or utcnow()
    base_credits = base_allotment(subscription)

    referral_credits, referral_used = session.query(
        func.coalesce(func.sum(ReferralCredit.credit_amount), 0),
        func.coalesce(func.sum(ReferralCredit.amount_used), 0),
    ).filter(
        ReferralCredit.subscription_id == subscription.id,
        ReferralCredit.status == ReferralCreditStatus.ACTIVE,
        ReferralCredit.expires_at > now,
    ).one()

    available = (
        (base_credits - subscription.base_credits_used)
        + (int(referral_credits) - int(referral_used))
    )

    return CreditBalance(
        base_credits=base_credits,
        base_credits_used=subscription.base_credits_used,
        referral_credits=int(referral_credits),
        referral_credits_used=int(referral_used),
        available_credits=available,
    )


def draw_referral_credits(session: Session, subscription_id: int, amount: int, now: datetime) -> int:
    """Draw up to ``amount`` from live referral credits, soonest-expiring first.

    Fully drawn credits become USED.

    Returns:
        Credits actually drawn
    """
    drawn = 0
    for referral_credit in _live_referral_credits(session, subscription_id, now).with_for_update():
        if drawn >= amount:
            break
        take = min(referral_credit.remaining, amount - drawn)
        referral_credit.amount_used += take
        if referral_credit.remaining == 0:
            referral_credit.status = ReferralCreditStatus.USED
        drawn += take
    return drawn


class CreditService:
    """The single gate through which features spend subscription credits.

    Operations:
    - Read balances
    - Consume credits for a catalog service (referral pool first)
    - Redeem one specific referral credit
    - Mint and expire referral credits
    """

    def __init__(self, database: Database | None = None, discount_engine: DiscountEngine | None = None):
        """Initialize credit service."""
        self.db = database or db
        self.discount_engine = discount_engine or DiscountEngine(self.db)
        self.logger = get_logger(__name__)

    def get_credit_balance(self, subscription_id: int, now: datetime | None = None) -> CreditBalance:
        """Get a subscription's credit balance.

        Raises:
            NotFoundError: If the subscription does not exist
        """
        with self.db.session() as session:
            subscription = session.query(Subscription).filter(
                Subscription.id == subscription_id
            ).first()

            if not subscription:
                raise NotFoundError("Subscription", subscription_id)

            return compute_balance(session, subscription, now)

    def consume_credits(
        self,
        subscription_id: int,
        service_id: int,
        units: int,
        description: str | None = None,
        discount_code: str | None = None,
        now: datetime | None = None,
    ) -> CreditConsumptionResult:
        """Charge ``units`` of a service against a subscription.

        Price lookup, optional discount redemption, balance check, usage
        increment and the audit row all commit together or not at all. The
        subscription row is locked for the whole transaction so concurrent
        consumptions serialize on it.

        Args:
            subscription_id: Subscription to charge
            service_id: Catalog entry id
            units: Units consumed
            description: Optional description stored on the audit row
            discount_code: Optional discount code to redeem on this charge
            now: Evaluation time (defaults to current UTC)

        Returns:
            Consumption summary

        Raises:
            NotFoundError: If the subscription or service is unknown/inactive
            InvalidUnitsError: If units are outside the service's bounds
            SubscriptionInactiveError: If the subscription cannot consume
            DiscountNotApplicableError: If the discount code cannot be used
            InsufficientCreditsError: If not enough credits remain
        """
        now = now or utcnow()

        with self.db.session() as session:
            # Concurrent consumptions on the same subscription serialize here
            subscription = lock_row(session, Subscription, subscription_id)

            if not subscription:
                raise NotFoundError("Subscription", subscription_id)

            if subscription.expire_if_lapsed(now):
                self.logger.info(
                    "subscription_expired",
                    subscription_id=subscription_id,
                    period_end=subscription.current_period_end.isoformat(),
                )
                # Keep the expiry even though this charge is refused
                session.commit()

            if subscription.status not in CONSUMING_STATUSES:
                raise SubscriptionInactiveError(
                    f"Subscription {subscription_id} is {subscription.status.value}"
                )

            service = session.query(CreditValue).filter(
                CreditValue.id == service_id,
                CreditValue.is_active == True,
            ).first()

            if not service:
                raise NotFoundError("CreditValue", service_id)

            cost = calculate_cost(service, units)
            total_cost = cost.discounted_cost

            if discount_code:
                application = self.discount_engine.redeem(
                    session,
                    code=discount_code,
                    client_id=subscription.client_id,
                    amount=total_cost,
                    subscription_id=subscription_id,
                    service_id=service_id,
                    service_type=service.service_type,
                    now=now,
                )
                total_cost = ceil_credits(Decimal(total_cost) - Decimal(str(application.discount_amount)))

            balance = compute_balance(session, subscription, now)

            if balance.available_credits < total_cost:
                raise InsufficientCreditsError(total_cost, balance.available_credits)

            # Referral pool is drawn down before the base pool
            available_referral = balance.referral_credits - balance.referral_credits_used
            referral_to_use = draw_referral_credits(
                session, subscription_id, min(available_referral, total_cost), now
            )
            base_to_use = total_cost - referral_to_use

            subscription.referral_credits_used += referral_to_use
            subscription.base_credits_used += base_to_use
            subscription.updated_at = now

            credit_type = CreditType.REFERRAL if referral_to_use > 0 else CreditType.BASE
            discount_applied = cost.base_cost - total_cost

            session.add(CreditConsumption(
                subscription_id=subscription_id,
                service_id=service_id,
                units=units,
                unit_type=service.base_unit.value,
                credit_rate=service.credits_per_unit,
                total_credits=total_cost,
                discount_applied=discount_applied,
                credit_type=credit_type,
                description=description,
                created_at=now,
            ))

            self.logger.info(
                "credits_consumed",
                subscription_id=subscription_id,
                service_type=service.service_type,
                units=units,
                total_credits=total_cost,
                referral_credits=referral_to_use,
                base_credits=base_to_use,
                available_after=balance.available_credits - total_cost,
            )

            return CreditConsumptionResult(
                subscription_id=subscription_id,
                service_id=service_id,
                units=units,
                total_credits=total_cost,
                discount_applied=discount_applied,
                referral_credits_used=referral_to_use,
                base_credits_used=base_to_use,
                credit_type=credit_type,
                description=description,
            )

    def consume_referral_credit(
        self,
        subscription_id: int,
        referral_credit_id: int,
        amount: int,
        now: datetime | None = None,
    ) -> CreditConsumptionResult:
        """Redeem one specific referral credit.

        The credit becomes USED. ``amount`` may not exceed what pooled
        consumption has left on it; any remainder is forfeited.

        Raises:
            NotFoundError: If the subscription does not exist
            InvalidOrExpiredCreditError: If the credit is unknown, belongs to
                another subscription, is not ACTIVE, has expired, or has less
                than ``amount`` left
        """
        now = now or utcnow()

        with self.db.session() as session:
            # Same lock order as consume_credits: subscription, then its credits
            subscription = lock_row(session, Subscription, subscription_id)

            if not subscription:
                raise NotFoundError("Subscription", subscription_id)

            referral_credit = session.query(ReferralCredit).filter(
                ReferralCredit.id == referral_credit_id
            ).with_for_update().first()

            if (
                not referral_credit
                or referral_credit.subscription_id != subscription_id
                or not referral_credit.is_usable(now)
            ):
                raise InvalidOrExpiredCreditError("Invalid or expired referral credit")

            if amount <= 0 or amount > referral_credit.remaining:
                raise InvalidOrExpiredCreditError(
                    f"Amount {amount} exceeds the {referral_credit.remaining} credits left on referral credit"
                )

            referral_credit.amount_used += amount
            referral_credit.status = ReferralCreditStatus.USED
            subscription.referral_credits_used += amount
            subscription.updated_at = now

            session.add(CreditConsumption(
                subscription_id=subscription_id,
                referral_credit_id=referral_credit_id,
                units=1,
                unit_type="credit",
                credit_rate=amount,
                total_credits=amount,
                discount_applied=0,
                credit_type=CreditType.REFERRAL,
                description="Referral credit redemption",
                created_at=now,
            ))

            self.logger.info(
                "referral_credit_redeemed",
                subscription_id=subscription_id,
                referral_credit_id=referral_credit_id,
                amount=amount,
            )

            return CreditConsumptionResult(
                subscription_id=subscription_id,
                service_id=None,
                units=1,
                total_credits=amount,
                discount_applied=0,
                referral_credits_used=amount,
                base_credits_used=0,
                credit_type=CreditType.REFERRAL,
                description="Referral credit redemption",
            )

    def add_referral_credit(
        self,
        session: Session,
        subscription_id: int,
        credit_amount: int,
        referred_email: str | None,
        expires_in_days: int,
        now: datetime | None = None,
    ) -> ReferralCredit:
        """Mint a referral credit inside the caller's transaction."""
        if credit_amount <= 0:
            raise ValueError("Credit amount must be positive")

        now = now or utcnow()
        referral_credit = ReferralCredit(
            subscription_id=subscription_id,
            credit_amount=credit_amount,
            amount_used=0,
            referred_user_email=referred_email,
            status=ReferralCreditStatus.ACTIVE,
            referral_date=now,
            expires_at=now + timedelta(days=expires_in_days),
        )
        session.add(referral_credit)
        session.flush()

        self.logger.info(
            "referral_credit_created",
            subscription_id=subscription_id,
            referral_credit_id=referral_credit.id,
            amount=credit_amount,
            expires_at=referral_credit.expires_at.isoformat(),
        )
        return referral_credit

    def create_referral_credit(
        self,
        subscription_id: int,
        credit_amount: int,
        referred_email: str | None = None,
        expires_in_days: int = 30,
        now: datetime | None = None,
    ) -> ReferralCredit:
        """Mint a referral credit for a subscription.

        Raises:
            NotFoundError: If the subscription does not exist
        """
        with self.db.session() as session:
            subscription = session.query(Subscription).filter(
                Subscription.id == subscription_id
            ).first()

            if not subscription:
                raise NotFoundError("Subscription", subscription_id)

            return self.add_referral_credit(
                session, subscription_id, credit_amount, referred_email, expires_in_days, now=now
            )

    def expire_referral_credits(self, now: datetime | None = None) -> int:
        """Mark every ACTIVE referral credit past its expiry as EXPIRED.

        Returns:
            Number of credits expired
        """
        now = now or utcnow()

        with self.db.session() as session:
            expired = session.query(ReferralCredit).filter(
                ReferralCredit.status == ReferralCreditStatus.ACTIVE,
                ReferralCredit.expires_at <= now,
            ).all()

            for referral_credit in expired:
                referral_credit.status = ReferralCreditStatus.EXPIRED
                self.logger.info(
                    "referral_credit_expired",
                    referral_credit_id=referral_credit.id,
                    subscription_id=referral_credit.subscription_id,
                    amount=referral_credit.credit_amount,
                )

            return len(expired)

    def get_consumption_history(
        self,
        subscription_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CreditConsumption]:
        """Consumption audit rows, newest first."""
        with self.db.session() as session:
            return session.query(CreditConsumption).filter(
                CreditConsumption.subscription_id == subscription_id
            ).order_by(
                CreditConsumption.created_at.desc(),
                CreditConsumption.id.desc(),
            ).offset(offset).limit(limit).all()

    def get_expiring_credits(self, subscription_id: int, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        """Referral credits that will expire within ``days``.

        Returns:
            Dict with the expiring amount and the earliest expiry
        """
        now = now or utcnow()
        cutoff = now + timedelta(days=days)

        with self.db.session() as session:
            expiring_amount, earliest = session.query(
                func.coalesce(func.sum(ReferralCredit.credit_amount), 0),
                func.min(ReferralCredit.expires_at),
            ).filter(
                ReferralCredit.subscription_id == subscription_id,
                ReferralCredit.status == ReferralCreditStatus.ACTIVE,
                ReferralCredit.expires_at > now,
                ReferralCredit.expires_at <= cutoff,
            ).one()

            return {
                "expiring_amount": int(expiring_amount),
                "expiring_within_days": days,
                "earliest_expiration": earliest.isoformat() if earliest else None,
            }


# Singleton instance
credit_service = CreditService()
