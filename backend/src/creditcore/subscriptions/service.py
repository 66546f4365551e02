"""Subscription lifecycle: creation, renewal, upgrades, pauses and expiry."""

from datetime import datetime
from typing import Any

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from creditcore.accounts.models import Client
from creditcore.errors import DuplicateSubscriptionError, InvalidStatusTransitionError, NotFoundError, SubscriptionInactiveError
from creditcore.ledger.models import CreditTransaction, TransactionType
from creditcore.ledger.service import base_allotment, compute_balance
from creditcore.logging_config import get_logger
from creditcore.notifications.service import NotificationService
from creditcore.settings import settings
from creditcore.storage.db import Database, db, lock_row, utcnow
from creditcore.subscriptions.models import (
    CONSUMING_STATUSES,
    LIVE_STATUSES,
    BillingCycle,
    Plan,
    PlanPrice,
    Subscription,
    SubscriptionHistory,
    SubscriptionStatus,
)

logger = get_logger(__name__)


def period_end(start: datetime, billing_cycle: BillingCycle | None) -> datetime:
    """End of a billing period starting at ``start``."""
    if billing_cycle == BillingCycle.ANNUALLY:
        return start + relativedelta(years=1)
    return start + relativedelta(months=1)


def _resolve_price(session: Session, plan_id: int, price_id: int | None) -> PlanPrice | None:
    """Requested price of the plan, else its first active price."""
    query = session.query(PlanPrice).filter(
        PlanPrice.plan_id == plan_id,
        PlanPrice.is_active == True,
    )
    if price_id is not None:
        price = query.filter(PlanPrice.id == price_id).first()
        if not price:
            raise NotFoundError("PlanPrice", price_id)
        return price
    return query.order_by(PlanPrice.id).first()


def _snapshot(session: Session, subscription: Subscription, reason: str, end_date: datetime) -> SubscriptionHistory:
    """Record the closing state of the current period."""
    entry = SubscriptionHistory(
        subscription_id=subscription.id,
        plan_id=subscription.plan_id,
        price_id=subscription.price_id,
        status=subscription.status,
        start_date=subscription.current_period_start,
        end_date=end_date,
        base_credits_used=subscription.base_credits_used,
        referral_credits_used=subscription.referral_credits_used,
        reason=reason,
    )
    session.add(entry)
    return entry


class SubscriptionService:
    """Service for the subscription state machine.

    Every status change goes through ``Subscription.transition_to`` so
    illegal moves raise instead of silently overwriting the status.
    """

    def __init__(self, database: Database | None = None, notifier: NotificationService | None = None):
        """Initialize subscription service."""
        self.db = database or db
        self.notifier = notifier or NotificationService()
        self.logger = get_logger(__name__)

    def _lock(self, session: Session, subscription_id: int) -> Subscription:
        subscription = lock_row(session, Subscription, subscription_id)
        if not subscription:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    def create_subscription(
        self,
        client_id: int,
        plan_id: int,
        price_id: int | None = None,
        custom_credits: int | None = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
        billing_cycle: BillingCycle | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """Open a subscription for a client.

        Args:
            client_id: Subscribing client
            plan_id: Plan to subscribe to
            price_id: Price point (defaults to the plan's first active price)
            custom_credits: Base allotment overriding the price's credits
            status: Initial status (ACTIVE or TRIALING)
            current_period_start: Period start (defaults to now)
            current_period_end: Period end (defaults to start + billing cycle)
            billing_cycle: Cycle used when the period end is derived

        Raises:
            NotFoundError: If the client, plan or price does not exist
            DuplicateSubscriptionError: If the client already has a live subscription
        """
        with self.db.session() as session:
            return self.add_subscription(
                session,
                client_id,
                plan_id,
                price_id=price_id,
                custom_credits=custom_credits,
                status=status,
                current_period_start=current_period_start,
                current_period_end=current_period_end,
                billing_cycle=billing_cycle,
                now=now,
            )

    def add_subscription(
        self,
        session: Session,
        client_id: int,
        plan_id: int,
        price_id: int | None = None,
        custom_credits: int | None = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
        billing_cycle: BillingCycle | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """Open a subscription inside the caller's transaction."""
        now = now or utcnow()
        if status not in CONSUMING_STATUSES:
            raise InvalidStatusTransitionError("Subscription", "new", status.value)

        client = session.query(Client).filter(Client.id == client_id).first()
        if not client:
            raise NotFoundError("Client", client_id)

        plan = session.query(Plan).filter(Plan.id == plan_id).first()
        if not plan:
            raise NotFoundError("Plan", plan_id)

        existing = session.query(Subscription).filter(
            Subscription.client_id == client_id,
            Subscription.status.in_(LIVE_STATUSES),
        ).first()
        if existing:
            raise DuplicateSubscriptionError(client_id)

        price = _resolve_price(session, plan_id, price_id)
        if price is None and custom_credits is None:
            raise NotFoundError("PlanPrice", f"active for plan {plan_id}")

        start = current_period_start or now
        cycle = billing_cycle or (price.billing_cycle if price else None)
        end = current_period_end or period_end(start, cycle)

        subscription = Subscription(
            client_id=client_id,
            plan_id=plan_id,
            price_id=price.id if price else None,
            price=price,
            custom_credits=custom_credits,
            status=status,
            current_period_start=start,
            current_period_end=end,
        )
        session.add(subscription)
        session.flush()

        self.logger.info(
            "subscription_created",
            subscription_id=subscription.id,
            client_id=client_id,
            plan_id=plan_id,
            status=status.value,
            period_end=end.isoformat(),
        )
        return subscription

    def get_subscription(self, subscription_id: int) -> Subscription:
        with self.db.session() as session:
            subscription = session.query(Subscription).filter(
                Subscription.id == subscription_id
            ).first()
            if not subscription:
                raise NotFoundError("Subscription", subscription_id)
            return subscription

    def get_client_subscription(self, client_id: int) -> Subscription | None:
        """Client's live subscription, if any."""
        with self.db.session() as session:
            return session.query(Subscription).filter(
                Subscription.client_id == client_id,
                Subscription.status.in_(LIVE_STATUSES),
            ).order_by(Subscription.id.desc()).first()

    def cancel_subscription(self, subscription_id: int, reason: str | None = None, now: datetime | None = None) -> Subscription:
        """Cancel a subscription. Canceled is terminal."""
        now = now or utcnow()

        with self.db.session() as session:
            subscription = self._lock(session, subscription_id)
            previous = subscription.status
            subscription.transition_to(SubscriptionStatus.CANCELED)
            _snapshot(session, subscription, reason or "canceled", now)
            subscription.updated_at = now

            self.logger.info(
                "subscription_canceled",
                subscription_id=subscription_id,
                previous_status=previous.value,
                reason=reason,
            )
            return subscription

    def renew_subscription(self, subscription_id: int, now: datetime | None = None) -> Subscription:
        """Start the next billing period.

        Base usage resets; referral usage carries over since referral
        credits expire on their own schedule.
        """
        with self.db.session() as session:
            return self.apply_renewal(session, subscription_id, now=now)

    def apply_renewal(self, session: Session, subscription_id: int, now: datetime | None = None) -> Subscription:
        """Renew inside the caller's transaction."""
        now = now or utcnow()
        subscription = self._lock(session, subscription_id)
        _snapshot(session, subscription, "renewal", subscription.current_period_end)
        subscription.transition_to(SubscriptionStatus.ACTIVE)

        cycle = subscription.price.billing_cycle if subscription.price else None
        start = max(subscription.current_period_end, now)
        subscription.current_period_start = start
        subscription.current_period_end = period_end(start, cycle)
        subscription.base_credits_used = 0
        subscription.updated_at = now

        self.logger.info(
            "subscription_renewed",
            subscription_id=subscription_id,
            period_end=subscription.current_period_end.isoformat(),
        )
        return subscription

    def upgrade_subscription(
        self,
        subscription_id: int,
        new_plan_id: int,
        price_id: int | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """Move a live subscription to another plan, starting a fresh period.

        Raises:
            NotFoundError: If the subscription, plan or price does not exist
            SubscriptionInactiveError: If the subscription is not live
        """
        now = now or utcnow()

        with self.db.session() as session:
            subscription = self._lock(session, subscription_id)
            if subscription.status not in LIVE_STATUSES:
                raise SubscriptionInactiveError(
                    f"Subscription {subscription_id} is {subscription.status.value}"
                )

            plan = session.query(Plan).filter(Plan.id == new_plan_id).first()
            if not plan:
                raise NotFoundError("Plan", new_plan_id)

            price = _resolve_price(session, new_plan_id, price_id)
            if price is None:
                raise NotFoundError("PlanPrice", f"active for plan {new_plan_id}")

            _snapshot(session, subscription, "upgrade", now)
            old_plan_id = subscription.plan_id

            subscription.plan_id = new_plan_id
            subscription.price_id = price.id
            subscription.price = price
            subscription.custom_credits = None
            subscription.base_credits_used = 0
            subscription.current_period_start = now
            subscription.current_period_end = period_end(now, price.billing_cycle)
            subscription.updated_at = now

            self.logger.info(
                "subscription_upgraded",
                subscription_id=subscription_id,
                old_plan_id=old_plan_id,
                new_plan_id=new_plan_id,
            )
            return subscription

    def pause_subscription(self, subscription_id: int) -> Subscription:
        with self.db.session() as session:
            subscription = self._lock(session, subscription_id)
            subscription.transition_to(SubscriptionStatus.PAUSED)
            self.logger.info("subscription_paused", subscription_id=subscription_id)
            return subscription

    def resume_subscription(self, subscription_id: int) -> Subscription:
        with self.db.session() as session:
            subscription = self._lock(session, subscription_id)
            if subscription.status != SubscriptionStatus.PAUSED:
                raise InvalidStatusTransitionError(
                    "Subscription", subscription.status.value, SubscriptionStatus.ACTIVE.value
                )
            subscription.transition_to(SubscriptionStatus.ACTIVE)
            self.logger.info("subscription_resumed", subscription_id=subscription_id)
            return subscription

    def allocate_credits(
        self,
        subscription_id: int,
        amount: int,
        description: str | None = None,
        now: datetime | None = None,
    ) -> CreditTransaction:
        """Allocate a paid period's base credits.

        Resets base usage and activates a trialing subscription.

        Raises:
            NotFoundError: If the subscription does not exist
            SubscriptionInactiveError: If the subscription is paused, expired or canceled
        """
        with self.db.session() as session:
            return self.apply_allocation(session, subscription_id, amount, description=description, now=now)

    def apply_allocation(
        self,
        session: Session,
        subscription_id: int,
        amount: int,
        description: str | None = None,
        now: datetime | None = None,
    ) -> CreditTransaction:
        """Allocate inside the caller's transaction."""
        if amount <= 0:
            raise ValueError("Allocation amount must be positive")
        now = now or utcnow()

        subscription = self._lock(session, subscription_id)
        if subscription.status not in CONSUMING_STATUSES:
            raise SubscriptionInactiveError(
                f"Subscription {subscription_id} is {subscription.status.value}"
            )

        if subscription.status == SubscriptionStatus.TRIALING:
            subscription.transition_to(SubscriptionStatus.ACTIVE)

        price_credits = subscription.price.credits if subscription.price else None
        subscription.custom_credits = None if amount == price_credits else amount
        subscription.base_credits_used = 0
        subscription.updated_at = now

        balance = compute_balance(session, subscription, now)
        transaction = CreditTransaction(
            client_id=subscription.client_id,
            subscription_id=subscription_id,
            amount=amount,
            type=TransactionType.SUBSCRIPTION,
            description=description or "Subscription credit allocation",
            remaining=balance.available_credits,
            created_at=now,
        )
        session.add(transaction)
        session.flush()

        self.logger.info(
            "credits_allocated",
            subscription_id=subscription_id,
            amount=amount,
            available=balance.available_credits,
        )
        return transaction

    def check_subscription_status(self, subscription_id: int, now: datetime | None = None) -> bool:
        """Whether the subscription may consume credits right now.

        A consuming subscription past its period end is moved to EXPIRED here.
        """
        now = now or utcnow()

        with self.db.session() as session:
            subscription = self._lock(session, subscription_id)

            if subscription.expire_if_lapsed(now):
                self.logger.info(
                    "subscription_expired",
                    subscription_id=subscription_id,
                    period_end=subscription.current_period_end.isoformat(),
                )

            return subscription.status in CONSUMING_STATUSES

    def get_subscription_history(self, subscription_id: int) -> list[SubscriptionHistory]:
        with self.db.session() as session:
            return session.query(SubscriptionHistory).filter(
                SubscriptionHistory.subscription_id == subscription_id
            ).order_by(SubscriptionHistory.id.desc()).all()

    def check_low_credits(self, threshold: float | None = None) -> list[dict[str, Any]]:
        """Notify clients whose remaining base credits are at or below the threshold.

        Args:
            threshold: Fraction of the base allotment (defaults to settings)

        Returns:
            One entry per flagged subscription
        """
        threshold = settings.low_credit_threshold if threshold is None else threshold
        flagged = []

        with self.db.session() as session:
            subscriptions = session.query(Subscription).filter(
                Subscription.status.in_(CONSUMING_STATUSES)
            ).order_by(Subscription.id).all()

            for subscription in subscriptions:
                total = base_allotment(subscription)
                if total <= 0:
                    continue
                remaining = total - subscription.base_credits_used
                if remaining <= total * threshold:
                    flagged.append({
                        "subscription_id": subscription.id,
                        "client_id": subscription.client_id,
                        "remaining": remaining,
                        "total": total,
                    })

        for entry in flagged:
            self.logger.warning("low_credits", **entry)
            self.notifier.send_low_credits(
                entry["client_id"], entry["subscription_id"], entry["remaining"], entry["total"]
            )

        return flagged


# Singleton instance
subscription_service = SubscriptionService()
