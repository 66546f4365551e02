"""Referral service: links, click tracking, completion and rewards."""

import secrets
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from creditcore.accounts.models import Client
from creditcore.errors import (
    AlreadyAppliedError,
    AlreadyCompletedError,
    NotFoundError,
    ReferralCodeExhaustedError,
    ReferralNotCompletedError,
)
from creditcore.ledger.models import CreditTransaction, ReferralCredit, TransactionType
from creditcore.ledger.service import CreditService, compute_balance
from creditcore.logging_config import get_logger
from creditcore.notifications.service import NotificationService
from creditcore.referral.fraud import FraudDetector
from creditcore.referral.models import (
    Referral,
    ReferralAnalytics,
    ReferralAnalyticsResponse,
    ReferralClick,
    ReferralClickResult,
    ReferralLink,
    ReferralProgramSettings,
    ReferralSettingsResponse,
    ReferralSettingsUpdate,
    ReferralStats,
    ReferralStatus,
    RiskLevel,
)
from creditcore.settings import settings
from creditcore.storage.db import Database, db, utcnow
from creditcore.subscriptions.models import Subscription, SubscriptionStatus

logger = get_logger(__name__)


def _generate_unique_code(length: int = 8) -> str:
    """Generate a readable referral code.

    Uses uppercase letters and digits, avoiding confusing characters.
    Format: ABC12XYZ (8 chars by default)
    """
    # Exclude confusing characters: 0, O, I, l, 1
    alphabet = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def build_referral_link(code: str, base_url: str | None = None, language: str | None = None) -> str:
    base = (base_url or settings.frontend_url).rstrip("/")
    if language:
        return f"{base}/{language}/refer/{code}"
    return f"{base}/refer/{code}"


def _active_subscription(session: Session, client_id: int) -> Subscription | None:
    return session.query(Subscription).filter(
        Subscription.client_id == client_id,
        Subscription.status == SubscriptionStatus.ACTIVE,
    ).order_by(Subscription.id.desc()).first()


def program_terms(session: Session) -> ReferralSettingsResponse:
    """Stored referral program terms, or the configured defaults when none are stored."""
    stored = session.query(ReferralProgramSettings).order_by(ReferralProgramSettings.id).first()
    if stored:
        return ReferralSettingsResponse(
            credit_per_referral=stored.credit_per_referral,
            expiration_days=stored.expiration_days,
        )
    return ReferralSettingsResponse(
        credit_per_referral=settings.referral_credit_per_referral,
        expiration_days=settings.referral_expiration_days,
    )


class ReferralService:
    """Service for referral links, clicks and rewards.

    A referral goes pending -> completed exactly once, and its reward is
    applied at most once (guarded by ``discount_applied``).
    """

    def __init__(
        self,
        database: Database | None = None,
        credit_service: CreditService | None = None,
        fraud_detector: FraudDetector | None = None,
        notifier: NotificationService | None = None,
    ):
        """Initialize referral service."""
        self.db = database or db
        self.credit_service = credit_service or CreditService(self.db)
        self.fraud_detector = fraud_detector or FraudDetector()
        self.notifier = notifier or NotificationService()
        self.logger = get_logger(__name__)

    def _allocate_code(self, session: Session) -> str:
        """Draw codes until one is free in both referrals and clients."""
        for _ in range(settings.referral_code_max_attempts):
            code = _generate_unique_code(settings.referral_code_length)
            taken = session.query(Referral.id).filter(Referral.code == code).first()
            if not taken:
                taken = session.query(Client.id).filter(Client.referral_code == code).first()
            if not taken:
                return code

        raise ReferralCodeExhaustedError(
            f"No free referral code after {settings.referral_code_max_attempts} attempts"
        )

    def _new_referral(self, session: Session, referring_client_id: int, code: str, link: str, now: datetime, **fields) -> Referral:
        terms = program_terms(session)
        referral = Referral(
            referring_client_id=referring_client_id,
            code=code,
            referral_link=link,
            coupon_code=f"REF-{code[:6]}",
            status=ReferralStatus.PENDING,
            discount_credits=terms.credit_per_referral,
            referral_date=now,
            expiry_date=now + timedelta(days=terms.expiration_days),
            **fields,
        )
        session.add(referral)
        session.flush()
        return referral

    # ==================== LINKS ====================

    def generate_referral_link(
        self,
        client_id: int,
        base_url: str | None = None,
        language: str | None = None,
        now: datetime | None = None,
    ) -> ReferralLink:
        """Create a pending referral with a fresh code and link.

        Args:
            client_id: Referring client
            base_url: Link base (defaults to the configured frontend URL)
            language: Optional language segment of the link

        Raises:
            NotFoundError: If the client does not exist
            ReferralCodeExhaustedError: If no free code could be drawn
        """
        now = now or utcnow()

        with self.db.session() as session:
            client = session.query(Client).filter(Client.id == client_id).first()
            if not client:
                raise NotFoundError("Client", client_id)

            code = self._allocate_code(session)
            link = build_referral_link(code, base_url, language)
            referral = self._new_referral(session, client_id, code, link, now)

            if not client.referral_code:
                client.referral_code = code

            self.logger.info(
                "referral_link_generated",
                client_id=client_id,
                referral_id=referral.id,
                code=code,
            )

            return ReferralLink(
                referral_id=referral.id,
                code=code,
                link=link,
                coupon_code=referral.coupon_code,
                expiry_date=referral.expiry_date,
            )

    # ==================== CLICKS ====================

    def track_referral_click(
        self,
        code: str,
        ip_address: str,
        user_agent: str | None = None,
        location: str | None = None,
        now: datetime | None = None,
    ) -> ReferralClickResult:
        """Record a click on a referral code.

        Repeat clicks from the same IP for the same referrer count on one
        referral. Every click is stored with its fraud score; high risk is
        logged, never blocked.

        Raises:
            NotFoundError: If the code belongs to no client or referral
        """
        code = code.upper().strip()
        now = now or utcnow()

        with self.db.session() as session:
            by_code = session.query(Referral).filter(Referral.code == code).with_for_update().first()
            client = session.query(Client).filter(Client.referral_code == code).first()
            if client:
                referring_client_id = client.id
            elif by_code:
                referring_client_id = by_code.referring_client_id
            else:
                raise NotFoundError("Referral", code)

            fraud = self.fraud_detector.score(
                session, referring_client_id, ip_address, user_agent, location, now
            )

            referral = session.query(Referral).filter(
                Referral.referring_client_id == referring_client_id,
                Referral.referred_ip == ip_address,
            ).with_for_update().first()

            if referral:
                referral.link_clicks += 1
                referral.last_clicked_at = now
            elif (
                by_code is not None
                and by_code.referring_client_id == referring_client_id
                and by_code.referred_ip is None
                and not by_code.is_completed
            ):
                # First visitor of a generated link takes over its referral
                referral = by_code
                referral.referred_ip = ip_address
                referral.referred_user_agent = user_agent
                referral.referred_location = location
                referral.link_clicks += 1
                referral.last_clicked_at = now
            else:
                new_code = self._allocate_code(session)
                referral = self._new_referral(
                    session,
                    referring_client_id,
                    new_code,
                    build_referral_link(new_code),
                    now,
                    referred_ip=ip_address,
                    referred_user_agent=user_agent,
                    referred_location=location,
                    link_clicks=1,
                    last_clicked_at=now,
                )

            click = ReferralClick(
                referral_id=referral.id,
                ip_address=ip_address,
                user_agent=user_agent,
                location=location,
                clicked_at=now,
                fraud_score=fraud.score,
                risk_level=fraud.risk_level,
                fraud_indicators=fraud.indicators,
            )
            session.add(click)
            session.flush()

            self._update_analytics(session, referral, now)

            if fraud.risk_level == RiskLevel.HIGH:
                self.logger.warning(
                    "high_fraud_risk",
                    referral_id=referral.id,
                    ip_address=ip_address,
                    score=fraud.score,
                    indicators=fraud.indicators,
                )

            self.logger.info(
                "referral_click_tracked",
                code=code,
                referral_id=referral.id,
                link_clicks=referral.link_clicks,
                risk_level=fraud.risk_level.value,
            )

            return ReferralClickResult(
                referral_id=referral.id,
                click_id=click.id,
                link_clicks=referral.link_clicks,
                fraud=fraud,
            )

    # ==================== COMPLETION ====================

    def complete_referral(self, referral_link: str, new_client_id: int, now: datetime | None = None) -> Referral:
        """Mark a referral completed by a newly signed-up client, then reward it.

        The completion commits before the reward runs. A failing reward
        (e.g. the referrer has no active subscription) raises but leaves the
        referral completed; the reward can be retried with
        ``process_referral_reward``.

        Raises:
            NotFoundError: If the link or the new client is unknown
            AlreadyCompletedError: If the referral is already completed
        """
        now = now or utcnow()

        with self.db.session() as session:
            referral = session.query(Referral).filter(
                Referral.referral_link == referral_link
            ).with_for_update().first()

            if not referral:
                raise NotFoundError("Referral", referral_link)

            if referral.is_completed:
                raise AlreadyCompletedError(f"Referral {referral.id} already completed")

            new_client = session.query(Client).filter(Client.id == new_client_id).first()
            if not new_client:
                raise NotFoundError("Client", new_client_id)

            referral.transition_to(ReferralStatus.COMPLETED)
            referral.referred_client_id = new_client_id
            referral.signups += 1
            referral.updated_at = now

            latest_click = session.query(ReferralClick).filter(
                ReferralClick.referral_id == referral.id,
                ReferralClick.converted == False,
            ).order_by(ReferralClick.clicked_at.desc(), ReferralClick.id.desc()).first()
            if latest_click:
                latest_click.converted = True

            self._update_analytics(session, referral, now)
            referral_id = referral.id

            self.logger.info(
                "referral_completed",
                referral_id=referral_id,
                referring_client_id=referral.referring_client_id,
                referred_client_id=new_client_id,
            )

        self.process_referral_reward(referral_id, now=now)
        return self.get_referral(referral_id)

    def process_referral_reward(self, referral_id: int, now: datetime | None = None) -> ReferralCredit:
        """Grant the referrer's reward for a completed referral.

        Returns:
            The minted referral credit

        Raises:
            NotFoundError: If the referral or the referrer's active subscription is missing
            ReferralNotCompletedError: If the referral is still pending
            AlreadyAppliedError: If the reward was already granted
        """
        now = now or utcnow()

        with self.db.session() as session:
            referral = session.query(Referral).filter(
                Referral.id == referral_id
            ).with_for_update().first()

            if not referral:
                raise NotFoundError("Referral", referral_id)

            if not referral.is_completed:
                raise ReferralNotCompletedError(f"Referral {referral_id} is not completed")

            if referral.discount_applied:
                raise AlreadyAppliedError(f"Reward for referral {referral_id} already applied")

            subscription = _active_subscription(session, referral.referring_client_id)
            if not subscription:
                raise NotFoundError("Subscription", f"active for client {referral.referring_client_id}")

            referred_email = None
            if referral.referred_client_id:
                referred = session.query(Client).filter(Client.id == referral.referred_client_id).first()
                referred_email = referred.email if referred else None

            credit = self.credit_service.add_referral_credit(
                session,
                subscription.id,
                referral.discount_credits,
                referred_email,
                program_terms(session).expiration_days,
                now=now,
            )

            balance = compute_balance(session, subscription, now)
            session.add(CreditTransaction(
                client_id=referral.referring_client_id,
                subscription_id=subscription.id,
                referral_id=referral.id,
                amount=referral.discount_credits,
                type=TransactionType.REFERRAL,
                description=f"Referral reward for referral {referral.id}",
                remaining=balance.available_credits,
                created_at=now,
            ))

            referral.discount_applied = True
            referral.rewards_earned += referral.discount_credits
            referral.active_users = 1
            referral.updated_at = now
            self._update_analytics(session, referral, now)

            recipient_id = referral.referring_client_id
            credits = referral.discount_credits

            self.logger.info(
                "referral_reward_applied",
                referral_id=referral_id,
                subscription_id=subscription.id,
                credits=credits,
            )

        # Outside the transaction; delivery problems never undo the reward
        self.notifier.send_referral_reward(recipient_id, referral_id, credits)
        return credit

    def create_referral_credit(
        self,
        referrer_client_id: int,
        referred_email: str | None = None,
        credit_amount: int | None = None,
        expires_in_days: int | None = None,
    ) -> ReferralCredit:
        """Mint a referral credit on the referrer's active subscription.

        Raises:
            NotFoundError: If the referrer has no active subscription
        """
        with self.db.session() as session:
            subscription = _active_subscription(session, referrer_client_id)
            if not subscription:
                raise NotFoundError("Subscription", f"active for client {referrer_client_id}")

            terms = program_terms(session)
            return self.credit_service.add_referral_credit(
                session,
                subscription.id,
                credit_amount or terms.credit_per_referral,
                referred_email,
                expires_in_days or terms.expiration_days,
            )

    # ==================== PROGRAM SETTINGS ====================

    def get_referral_settings(self) -> ReferralSettingsResponse:
        with self.db.session() as session:
            return program_terms(session)

    def update_referral_settings(self, update: ReferralSettingsUpdate) -> ReferralSettingsResponse:
        """Store new program terms.

        Applies to referrals created and rewards granted afterwards; existing
        referrals keep the credit amount and expiry they were created with.
        """
        with self.db.session() as session:
            stored = session.query(ReferralProgramSettings).order_by(
                ReferralProgramSettings.id
            ).with_for_update().first()
            if stored is None:
                stored = ReferralProgramSettings()
                session.add(stored)

            stored.credit_per_referral = update.credit_per_referral
            stored.expiration_days = update.expiration_days
            session.flush()

            self.logger.info(
                "referral_settings_updated",
                credit_per_referral=stored.credit_per_referral,
                expiration_days=stored.expiration_days,
            )
            return program_terms(session)

    # ==================== STATS ====================

    def get_referral(self, referral_id: int) -> Referral:
        with self.db.session() as session:
            referral = session.query(Referral).filter(Referral.id == referral_id).first()
            if not referral:
                raise NotFoundError("Referral", referral_id)
            return referral

    def get_referral_stats(self, client_id: int) -> ReferralStats:
        """Aggregate referral statistics of a referring client."""
        with self.db.session() as session:
            client = session.query(Client).filter(Client.id == client_id).first()
            if not client:
                raise NotFoundError("Client", client_id)

            referrals = session.query(Referral).filter(
                Referral.referring_client_id == client_id,
            ).all()

            completed = sum(1 for r in referrals if r.is_completed)
            return ReferralStats(
                referral_code=client.referral_code,
                total_referrals=len(referrals),
                completed_referrals=completed,
                pending_referrals=len(referrals) - completed,
                credits_earned=sum(r.rewards_earned for r in referrals),
                total_clicks=sum(r.link_clicks for r in referrals),
                total_signups=sum(r.signups for r in referrals),
            )

    def count_pending_referrals(self, client_id: int) -> int:
        with self.db.session() as session:
            return session.query(func.count(Referral.id)).filter(
                Referral.referring_client_id == client_id,
                Referral.status == ReferralStatus.PENDING,
            ).scalar() or 0

    def get_referral_analytics(self, referral_id: int) -> ReferralAnalyticsResponse:
        """Analytics of a referral, computed on first access."""
        with self.db.session() as session:
            referral = session.query(Referral).filter(Referral.id == referral_id).first()
            if not referral:
                raise NotFoundError("Referral", referral_id)

            analytics = referral.analytics or self._update_analytics(session, referral, utcnow())
            return ReferralAnalyticsResponse(
                referral_id=referral.id,
                conversion_rate=analytics.conversion_rate,
                average_spend=analytics.average_spend,
                time_to_conversion=analytics.time_to_conversion,
                link_clicks=referral.link_clicks,
                signups=referral.signups,
            )

    def update_referral_analytics(self, referral_id: int) -> ReferralAnalyticsResponse:
        """Recompute a referral's analytics."""
        with self.db.session() as session:
            referral = session.query(Referral).filter(Referral.id == referral_id).first()
            if not referral:
                raise NotFoundError("Referral", referral_id)
            self._update_analytics(session, referral, utcnow())

        return self.get_referral_analytics(referral_id)

    def _update_analytics(self, session: Session, referral: Referral, now: datetime) -> ReferralAnalytics:
        analytics = referral.analytics
        if analytics is None:
            analytics = ReferralAnalytics(referral_id=referral.id)
            session.add(analytics)
            referral.analytics = analytics

        if referral.link_clicks:
            analytics.conversion_rate = referral.signups / referral.link_clicks * 100
        else:
            analytics.conversion_rate = 0.0

        analytics.average_spend = float(referral.rewards_earned)

        if referral.is_completed and referral.last_clicked_at:
            analytics.time_to_conversion = (referral.last_clicked_at - referral.referral_date).days
        else:
            analytics.time_to_conversion = None

        analytics.updated_at = now
        session.flush()
        return analytics


# Singleton instance
referral_service = ReferralService()
