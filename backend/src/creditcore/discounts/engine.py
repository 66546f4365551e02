"""Discount engine: eligibility, holiday multipliers, usage caps and redemption."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from creditcore.discounts.models import (
    ApplicableDiscount,
    Discount,
    DiscountApplication,
    DiscountContext,
    DiscountCreate,
    DiscountRedemption,
    DiscountTarget,
    DiscountType,
    HolidayDiscountRule,
    HolidayRuleCreate,
)
from creditcore.errors import DiscountNotApplicableError, NotFoundError
from creditcore.logging_config import get_logger
from creditcore.storage.db import Database, db, utcnow

logger = get_logger(__name__)


def calculate_discount_amount(discount: ApplicableDiscount, amount: float) -> float:
    """Reduction a discount grants on ``amount``.

    Percentage discounts take ``effective_value`` percent of the amount;
    fixed discounts take ``effective_value`` outright. The result is capped by
    ``max_discount`` and never exceeds the amount itself.
    """
    if amount <= 0:
        return 0.0

    if discount.type == DiscountType.PERCENTAGE:
        reduction = amount * discount.effective_value / 100
    else:
        reduction = discount.effective_value

    if discount.max_discount is not None:
        reduction = min(reduction, discount.max_discount)
    return max(0.0, min(reduction, amount))


class DiscountEngine:
    """Service deciding which discounts apply and recording their use.

    Caps are always counted from live redemption rows. Redemption locks the
    discount row first so concurrent requests cannot both slip under a cap.
    """

    def __init__(self, database: Database | None = None):
        self.db = database or db
        self.logger = get_logger(__name__)

    # ==================== ADMIN ====================

    def create_discount(self, data: DiscountCreate | dict[str, Any]) -> Discount:
        """Create a discount definition."""
        if isinstance(data, dict):
            data = DiscountCreate.model_validate(data)

        with self.db.session() as session:
            discount = Discount(**data.model_dump())
            session.add(discount)
            session.flush()
            self.logger.info("discount_created", discount_id=discount.id, code=discount.code)
            return discount

    def add_holiday_rule(self, discount_id: int, data: HolidayRuleCreate | dict[str, Any]) -> HolidayDiscountRule:
        """Attach a holiday multiplier to a discount."""
        if isinstance(data, dict):
            data = HolidayRuleCreate.model_validate(data)

        with self.db.session() as session:
            discount = session.query(Discount).filter(Discount.id == discount_id).first()
            if not discount:
                raise NotFoundError("Discount", discount_id)

            rule = HolidayDiscountRule(discount_id=discount_id, **data.model_dump())
            session.add(rule)
            session.flush()
            self.logger.info(
                "holiday_rule_added",
                discount_id=discount_id,
                holiday=rule.holiday_name,
                multiplier=rule.multiplier,
            )
            return rule

    # ==================== ELIGIBILITY ====================

    def get_applicable_discounts(
        self,
        context: DiscountContext | None = None,
        now: datetime | None = None,
        **params: Any,
    ) -> list[ApplicableDiscount]:
        """Discounts the context may use right now.

        Args:
            context: Requesting user and target (or pass its fields as kwargs)
            now: Evaluation time (defaults to current UTC)

        Returns:
            Applicable discounts with holiday multipliers folded in. Discounts
            whose usage caps are reached are left out silently.
        """
        if context is None:
            context = DiscountContext(**params)
        now = now or utcnow()

        with self.db.session() as session:
            candidates = self._candidates(session, context.target_type, now)
            applicable = []
            for discount in candidates:
                evaluated = self._evaluate(session, discount, context, now)
                if evaluated is not None:
                    applicable.append(evaluated)
            return applicable

    def _candidates(self, session: Session, target_type: DiscountTarget, now: datetime) -> list[Discount]:
        targets = [target_type] if target_type == DiscountTarget.ALL else [target_type, DiscountTarget.ALL]
        return session.query(Discount).options(
            selectinload(Discount.holiday_rules)
        ).filter(
            Discount.is_active == True,
            or_(Discount.valid_from.is_(None), Discount.valid_from <= now),
            or_(Discount.valid_until.is_(None), Discount.valid_until >= now),
            Discount.applies_to.in_(targets),
        ).order_by(Discount.id).all()

    def _evaluate(
        self,
        session: Session,
        discount: Discount,
        context: DiscountContext,
        now: datetime,
    ) -> ApplicableDiscount | None:
        """Membership, caps and holiday multiplier for one candidate."""
        if context.plan_id is not None and discount.plan_ids and context.plan_id not in discount.plan_ids:
            return None
        if (
            context.service_type is not None
            and discount.service_types
            and context.service_type not in discount.service_types
        ):
            return None

        if discount.max_uses is not None:
            used = session.query(func.count(DiscountRedemption.id)).filter(
                DiscountRedemption.discount_id == discount.id,
            ).scalar() or 0
            if used >= discount.max_uses:
                return None

        if discount.user_max_uses is not None:
            used_by_user = session.query(func.count(DiscountRedemption.id)).filter(
                DiscountRedemption.discount_id == discount.id,
                DiscountRedemption.client_id == context.user_id,
            ).scalar() or 0
            if used_by_user >= discount.user_max_uses:
                return None

        multiplier = 1.0
        holiday_name = None
        for rule in discount.holiday_rules:
            if rule.matches(now.date()) and rule.multiplier > multiplier:
                multiplier = rule.multiplier
                holiday_name = rule.holiday_name

        effective_value = discount.value * multiplier
        if discount.type == DiscountType.PERCENTAGE:
            effective_value = min(effective_value, 100.0)

        return ApplicableDiscount(
            discount_id=discount.id,
            code=discount.code,
            name=discount.name,
            type=discount.type,
            value=discount.value,
            effective_value=effective_value,
            multiplier=multiplier,
            holiday_name=holiday_name,
            max_discount=discount.max_discount,
        )

    # ==================== REDEMPTION ====================

    def apply_discount(
        self,
        code: str,
        client_id: int,
        amount: float,
        subscription_id: int | None = None,
        service_id: int | None = None,
        plan_id: int | None = None,
        service_type: str | None = None,
    ) -> DiscountApplication:
        """Apply a discount code and record its redemption.

        Raises:
            NotFoundError: If the code is unknown
            DiscountNotApplicableError: If the discount cannot be used here
        """
        with self.db.session() as session:
            return self.redeem(
                session,
                code=code,
                client_id=client_id,
                amount=amount,
                subscription_id=subscription_id,
                service_id=service_id,
                plan_id=plan_id,
                service_type=service_type,
            )

    def redeem(
        self,
        session: Session,
        code: str,
        client_id: int,
        amount: float,
        subscription_id: int | None = None,
        service_id: int | None = None,
        plan_id: int | None = None,
        service_type: str | None = None,
        now: datetime | None = None,
    ) -> DiscountApplication:
        """Redeem inside the caller's transaction.

        The redemption row is written before the discount counts as consumed;
        if the caller's transaction rolls back, so does the redemption.
        """
        now = now or utcnow()
        target_type = DiscountTarget.SERVICES if service_id is not None else DiscountTarget.PLANS

        discount = session.query(Discount).filter(
            Discount.code == code
        ).with_for_update().first()

        if not discount:
            raise NotFoundError("Discount", code)

        if discount.applies_to not in (target_type, DiscountTarget.ALL):
            raise DiscountNotApplicableError(f"Discount {code} does not apply to {target_type.value}")

        eligible = {d.id for d in self._candidates(session, target_type, now)}
        evaluated = None
        if discount.id in eligible:
            context = DiscountContext(
                user_id=client_id,
                target_type=target_type,
                plan_id=plan_id,
                service_type=service_type,
            )
            evaluated = self._evaluate(session, discount, context, now)

        if evaluated is None:
            raise DiscountNotApplicableError(f"Discount {code} is not available")

        discount_amount = calculate_discount_amount(evaluated, amount)

        redemption = DiscountRedemption(
            discount_id=discount.id,
            client_id=client_id,
            subscription_id=subscription_id,
            credit_value_id=service_id,
            applied_to="service" if service_id is not None else "subscription",
            applied_amount=discount_amount,
        )
        session.add(redemption)
        session.flush()

        self.logger.info(
            "discount_redeemed",
            discount_id=discount.id,
            client_id=client_id,
            amount=amount,
            discount_amount=discount_amount,
            multiplier=evaluated.multiplier,
        )

        return DiscountApplication(
            discount_id=discount.id,
            redemption_id=redemption.id,
            discount_amount=discount_amount,
        )


# Singleton instance
discount_engine = DiscountEngine()
