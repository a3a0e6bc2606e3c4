import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .accounts import AccountStore
from .catalog import reference_price
from .errors import DuplicateAccountError, DuplicateReferralError, InvalidInputError
from .events import EventBus
from .ledger import Clock, Ledger, utcnow
from .models import (
    AccountBalance,
    ClaimStatus,
    EarningsSummary,
    LedgerEntry,
    LedgerHistoryResponse,
    LedgerSource,
    ReferralSummary,
    SignUpResponse,
    WithdrawalStatus,
)
from .referrals import DEFAULT_REFERRAL_RATE, ReferralEngine
from .storage import InMemoryStorage
from .tasks import TaskRegistry
from .withdrawals import DEFAULT_MIN_WITHDRAWAL, PayoutExecutor, WithdrawalCoordinator

logger = logging.getLogger(__name__)

EARNING_SOURCES = (LedgerSource.TASK, LedgerSource.REFERRAL, LedgerSource.BONUS)


class LedgerService:
    """Wires the ledger core together and serves the account-level views."""

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        referral_rate: Decimal = DEFAULT_REFERRAL_RATE,
        referral_base_package: str = "starter",
        strict_referral_codes: bool = False,
        min_withdrawal_amount: int = DEFAULT_MIN_WITHDRAWAL,
        payout_executor: Optional[PayoutExecutor] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.clock = clock or utcnow
        self.events = events or EventBus()
        self.referral_base_package = referral_base_package

        self.ledger = Ledger(self.storage, clock=self.clock)
        self.accounts = AccountStore(
            self.storage, self.ledger,
            strict_referral_codes=strict_referral_codes, clock=self.clock,
        )
        self.tasks = TaskRegistry(self.storage, self.ledger, events=self.events, clock=self.clock)
        self.referrals = ReferralEngine(
            self.storage, self.ledger, rate=referral_rate, events=self.events, clock=self.clock,
        )
        self.withdrawals = WithdrawalCoordinator(
            self.storage, self.ledger,
            min_amount=min_withdrawal_amount, events=self.events,
            payout_executor=payout_executor, clock=self.clock,
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "LedgerService":
        storage = InMemoryStorage(seed=settings.SEED_DEMO_DATA, lock_timeout=settings.LOCK_TIMEOUT_SECONDS)
        return cls(
            storage=storage,
            referral_rate=settings.REFERRAL_RATE,
            referral_base_package=settings.REFERRAL_BASE_PACKAGE,
            strict_referral_codes=settings.STRICT_REFERRAL_CODES,
            min_withdrawal_amount=settings.MIN_WITHDRAWAL_AMOUNT,
            **kwargs,
        )

    def sign_up(self, account_id: str, referral_code: Optional[str] = None) -> SignUpResponse:
        """Create the account, then pay the referrer's bonus as a separate step.

        Retrying a signup for an existing account re-runs only the bonus step,
        which is guarded by the duplicate-referral check.
        """
        try:
            account = self.accounts.create_account(account_id, referral_code)
            message = "Account created"
        except DuplicateAccountError:
            account = self.accounts.get_account(account_id)
            message = "Account already exists (idempotent return)"
            logger.info("Signup retried for existing account %s", account_id)

        bonus = None
        if account.referred_by:
            try:
                bonus = self.referrals.award_referral_bonus(
                    account.referred_by, account.id, reference_price(self.referral_base_package),
                )
            except DuplicateReferralError:
                bonus = self.referrals.get_bonus(account.referred_by, account.id)

        return SignUpResponse(account=account, referral_bonus=bonus, message=message)

    def grant_bonus(self, account_id: str, amount: int, description: str = "Promotional bonus") -> LedgerEntry:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidInputError("Bonus amount must be a positive integer number of cents")
        return self.ledger.append(account_id, amount, LedgerSource.BONUS, description)

    def get_balance(self, account_id: str) -> AccountBalance:
        history = list(self.ledger.get_history(account_id))
        return AccountBalance(
            account_id=account_id,
            balance=self.ledger.get_balance(account_id),
            total_entries=len(history),
            last_transaction_at=history[0].created_at if history else None,
        )

    def get_ledger_history(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        source: Optional[LedgerSource] = None,
    ) -> LedgerHistoryResponse:
        all_entries = list(self.ledger.get_history(account_id, source=source))
        return LedgerHistoryResponse(
            account_id=account_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            current_balance=self.ledger.get_balance(account_id),
        )

    def get_referral_summary(self, account_id: str) -> ReferralSummary:
        account = self.accounts.get_account(account_id)
        bonuses = self.referrals.list_bonuses(account_id)
        return ReferralSummary(
            account_id=account_id,
            referral_code=account.referral_code,
            referrals=self.accounts.list_referrals(account_id),
            bonuses=bonuses,
            total_earnings=sum(b.amount for b in bonuses),
        )

    def get_earnings_summary(self, account_id: str, now: Optional[datetime] = None) -> EarningsSummary:
        now = now or self.clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        earned = {source: 0 for source in EARNING_SOURCES}
        monthly = 0
        for entry in self.ledger.get_history(account_id):
            if entry.source in earned:
                earned[entry.source] += entry.amount
                if entry.created_at >= month_start:
                    monthly += entry.amount

        claims = self.tasks.list_claims(account_id)
        return EarningsSummary(
            account_id=account_id,
            completed_tasks=sum(1 for c in claims if c.status == ClaimStatus.COMPLETED),
            active_tasks=sum(1 for c in claims if c.status == ClaimStatus.ACTIVE),
            task_earnings=earned[LedgerSource.TASK],
            referrals=len(self.accounts.list_referrals(account_id)),
            referral_earnings=earned[LedgerSource.REFERRAL],
            bonus_earnings=earned[LedgerSource.BONUS],
            total_earnings=sum(earned.values()),
            monthly_earnings=monthly,
            pending_withdrawals=self.withdrawals.total(account_id, WithdrawalStatus.PENDING),
            withdrawn=self.withdrawals.total(account_id, WithdrawalStatus.COMPLETED),
            balance=self.ledger.get_balance(account_id),
        )
