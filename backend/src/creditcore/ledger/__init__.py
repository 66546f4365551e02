"""Credit ledger.

Owns each subscription's credit balance (base + referral) and performs
all-or-nothing consumption against the catalog and discount engine.
"""

from creditcore.ledger.models import (
    CreditBalance,
    CreditConsumption,
    CreditConsumptionResult,
    CreditTransaction,
    CreditType,
    ReferralCredit,
    ReferralCreditStatus,
    TransactionType,
)
from creditcore.ledger.service import CreditService, compute_balance, credit_service

__all__ = [
    "CreditBalance",
    "CreditConsumption",
    "CreditConsumptionResult",
    "CreditService",
    "CreditTransaction",
    "CreditType",
    "ReferralCredit",
    "ReferralCreditStatus",
    "TransactionType",
    "compute_balance",
    "credit_service",
]
