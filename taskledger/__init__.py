"""
Earnings Ledger for Social Tasks

This module provides:
- Append-only ledger entries; balances are always the sum of entries
- Task claims: active → completed (credited once) / expired
- Referral bonuses paid at most once per referrer/referred pair
- Withdrawals: pending → completed / rejected (with compensating credit)
- Per-account locking around every balance-affecting operation
"""

from .models import (
    LedgerSource,
    ClaimStatus,
    WithdrawalStatus,
    PaymentMethod,
    Platform,
    Account,
    Task,
    TaskClaim,
    LedgerEntry,
    ReferralBonus,
    WithdrawalRequest,
)
from .accounts import AccountStore
from .ledger import Ledger
from .referrals import ReferralEngine
from .tasks import TaskRegistry
from .withdrawals import WithdrawalCoordinator
from .service import LedgerService

__all__ = [
    "LedgerSource",
    "ClaimStatus",
    "WithdrawalStatus",
    "PaymentMethod",
    "Platform",
    "Account",
    "Task",
    "TaskClaim",
    "LedgerEntry",
    "ReferralBonus",
    "WithdrawalRequest",
    "AccountStore",
    "Ledger",
    "ReferralEngine",
    "TaskRegistry",
    "WithdrawalCoordinator",
    "LedgerService",
]
