"""Plan lookups with a TTL cache."""

from decimal import Decimal

from sqlalchemy.orm import selectinload

from creditcore.cache import TTLCache
from creditcore.errors import NotFoundError
from creditcore.logging_config import get_logger
from creditcore.settings import settings
from creditcore.storage.db import Database, db
from creditcore.subscriptions.models import BillingCycle, Plan, PlanPrice, PlanResponse

logger = get_logger(__name__)


class PlanService:
    """Service for reading and maintaining subscription plans.

    Plan reads are cached for ``settings.plan_cache_ttl_seconds``; every write
    through this service invalidates the affected plan.
    """

    def __init__(self, database: Database | None = None, cache: TTLCache[PlanResponse] | None = None):
        self.db = database or db
        self.cache = cache or TTLCache(settings.plan_cache_ttl_seconds)
        self.logger = get_logger(__name__)

    def get_plan(self, plan_id: int) -> PlanResponse | None:
        """Get a plan with its prices, served from cache when fresh."""
        cached = self.cache.get(plan_id)
        if cached is not None:
            return cached

        with self.db.session() as session:
            plan = session.query(Plan).options(selectinload(Plan.prices)).filter(
                Plan.id == plan_id
            ).first()

            if not plan:
                return None

            snapshot = PlanResponse.model_validate(plan)

        self.cache.set(plan_id, snapshot)
        return snapshot

    def list_plans(self) -> list[PlanResponse]:
        """All plans with prices (uncached listing)."""
        with self.db.session() as session:
            plans = session.query(Plan).options(selectinload(Plan.prices)).order_by(Plan.id).all()
            return [PlanResponse.model_validate(plan) for plan in plans]

    def create_plan(
        self,
        name: str,
        credits: int,
        amount: Decimal | float,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        description: str | None = None,
        is_custom: bool = False,
        currency: str = "USD",
    ) -> PlanResponse:
        """Create a plan with a single active price."""
        with self.db.session() as session:
            plan = Plan(name=name, description=description, is_custom=is_custom)
            session.add(plan)
            session.flush()

            session.add(PlanPrice(
                plan_id=plan.id,
                amount=Decimal(str(amount)),
                currency=currency,
                billing_cycle=billing_cycle,
                credits=credits,
                is_active=True,
            ))
            session.flush()
            session.refresh(plan)
            snapshot = PlanResponse.model_validate(plan)

        self.cache.invalidate(snapshot.id)
        self.logger.info("plan_created", plan_id=snapshot.id, credits=credits)
        return snapshot

    def add_price(
        self,
        plan_id: int,
        credits: int,
        amount: Decimal | float,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        currency: str = "USD",
    ) -> PlanResponse:
        """Add a price point to an existing plan."""
        with self.db.session() as session:
            plan = session.query(Plan).filter(Plan.id == plan_id).first()
            if not plan:
                raise NotFoundError("Plan", plan_id)

            session.add(PlanPrice(
                plan_id=plan_id,
                amount=Decimal(str(amount)),
                currency=currency,
                billing_cycle=billing_cycle,
                credits=credits,
                is_active=True,
            ))

        self.cache.invalidate(plan_id)
        self.logger.info("plan_price_added", plan_id=plan_id, credits=credits)
        return self.get_plan(plan_id)

    def deactivate_price(self, plan_id: int, price_id: int) -> None:
        """Retire a price point so new subscriptions stop using it."""
        with self.db.session() as session:
            price = session.query(PlanPrice).filter(
                PlanPrice.id == price_id,
                PlanPrice.plan_id == plan_id,
            ).first()
            if not price:
                raise NotFoundError("PlanPrice", price_id)
            price.is_active = False

        self.cache.invalidate(plan_id)
        self.logger.info("plan_price_deactivated", plan_id=plan_id, price_id=price_id)


# Singleton instance
plan_service = PlanService()
