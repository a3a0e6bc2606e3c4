import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import uuid4

from .errors import (
    AccountNotFoundError,
    DuplicateReferralError,
    InvalidInputError,
)
from .events import EventBus, ReferralAwarded
from .ledger import Clock, Ledger, utcnow
from .models import LedgerSource, ReferralBonus
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

DEFAULT_REFERRAL_RATE = Decimal("0.10")


def calculate_bonus(base_amount: int, rate: Decimal = DEFAULT_REFERRAL_RATE) -> int:
    """Bonus in cents, rounded half up to a whole cent."""
    return int((Decimal(base_amount) * Decimal(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ReferralEngine:
    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: Ledger,
        rate: Decimal = DEFAULT_REFERRAL_RATE,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ):
        if Decimal(rate) < 0:
            raise InvalidInputError("Referral rate cannot be negative")
        self.storage = storage
        self.ledger = ledger
        self.rate = Decimal(rate)
        self.events = events or EventBus()
        self.clock = clock or utcnow

    def award_referral_bonus(self, referrer_id: str, referred_id: str, base_amount: int) -> ReferralBonus:
        if isinstance(base_amount, bool) or not isinstance(base_amount, int) or base_amount <= 0:
            raise InvalidInputError("Base amount must be a positive integer number of cents")
        if referrer_id == referred_id:
            raise InvalidInputError("An account cannot refer itself")

        with self.storage.lock_accounts(referrer_id, referred_id):
            for account_id in (referrer_id, referred_id):
                if account_id not in self.storage.accounts:
                    raise AccountNotFoundError(f"Account {account_id} not found")
            if self.storage.accounts[referred_id]["referred_by"] != referrer_id:
                raise InvalidInputError(f"Account {referred_id} was not referred by {referrer_id}")
            if (referrer_id, referred_id) in self.storage.referral_index:
                logger.warning("Duplicate referral bonus attempt %s -> %s", referrer_id, referred_id)
                raise DuplicateReferralError(
                    f"Referral bonus for {referred_id} already paid to {referrer_id}"
                )

            amount = calculate_bonus(base_amount, self.rate)
            bonus_id = uuid4()
            entry = self.ledger.append(
                referrer_id,
                amount,
                LedgerSource.REFERRAL,
                f"Referral bonus for {referred_id}",
                reference_id=bonus_id,
                metadata={"referred_id": referred_id, "base_amount": base_amount, "rate": str(self.rate)},
            )
            bonus_data = {
                "id": bonus_id,
                "referrer_id": referrer_id,
                "referred_id": referred_id,
                "amount": amount,
                "base_amount": base_amount,
                "ledger_entry_id": entry.id,
                "created_at": entry.created_at,
            }
            self.storage.referral_bonuses[bonus_id] = bonus_data
            self.storage.referral_index[(referrer_id, referred_id)] = bonus_id

        self.events.publish(ReferralAwarded(
            account_id=referrer_id, occurred_at=entry.created_at,
            referred_id=referred_id, bonus_id=bonus_id, amount=amount,
        ))
        return ReferralBonus(**bonus_data)

    def get_bonus(self, referrer_id: str, referred_id: str) -> Optional[ReferralBonus]:
        bonus_id = self.storage.referral_index.get((referrer_id, referred_id))
        return ReferralBonus(**self.storage.referral_bonuses[bonus_id]) if bonus_id else None

    def list_bonuses(self, referrer_id: str) -> list[ReferralBonus]:
        bonuses = [
            ReferralBonus(**b) for b in list(self.storage.referral_bonuses.values())
            if b["referrer_id"] == referrer_id
        ]
        bonuses.sort(key=lambda b: b.created_at, reverse=True)
        return bonuses
