"""FastAPI dependencies wiring services to the request's database."""

from fastapi import Depends

from creditcore.cache import TTLCache
from creditcore.catalog.service import CreditValueService
from creditcore.discounts.engine import DiscountEngine
from creditcore.ledger.service import CreditService
from creditcore.referral.service import ReferralService
from creditcore.settings import settings
from creditcore.storage.db import Database, get_db
from creditcore.subscriptions.plans import PlanService
from creditcore.subscriptions.service import SubscriptionService

# Shared across requests so plan reads actually hit the cache
plan_cache = TTLCache(settings.plan_cache_ttl_seconds)


def get_catalog_service(database: Database = Depends(get_db)) -> CreditValueService:
    return CreditValueService(database)


def get_credit_service(database: Database = Depends(get_db)) -> CreditService:
    return CreditService(database)


def get_discount_engine(database: Database = Depends(get_db)) -> DiscountEngine:
    return DiscountEngine(database)


def get_referral_service(database: Database = Depends(get_db)) -> ReferralService:
    return ReferralService(database)


def get_subscription_service(database: Database = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(database)


def get_plan_service(database: Database = Depends(get_db)) -> PlanService:
    return PlanService(database, cache=plan_cache)
