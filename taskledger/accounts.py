import logging
import uuid
from typing import Optional

from .errors import (
    AccountNotFoundError,
    DuplicateAccountError,
    InvalidInputError,
    InvalidReferralCodeError,
)
from .ledger import Clock, Ledger, utcnow
from .models import Account
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


def _next_referral_code() -> str:
    return uuid.uuid4().hex[:8].upper()


def normalize_referral_code(referral_code: Optional[str]) -> Optional[str]:
    if referral_code is None:
        return None
    cleaned = referral_code.strip().upper()
    return cleaned or None


class AccountStore:
    """Accounts and their referral links. Balances are always read from the ledger."""

    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: Ledger,
        strict_referral_codes: bool = False,
        clock: Optional[Clock] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.strict_referral_codes = strict_referral_codes
        self.clock = clock or utcnow

    def create_account(self, account_id: str, referral_code: Optional[str] = None) -> Account:
        if not isinstance(account_id, str) or not account_id.strip():
            raise InvalidInputError("Account id must be a non-empty string")
        if account_id != account_id.strip():
            raise InvalidInputError("Account id must not start or end with whitespace")

        referrer = self._resolve_referrer(referral_code)

        with self.storage.lock_accounts(account_id):
            if account_id in self.storage.accounts:
                raise DuplicateAccountError(f"Account {account_id} already exists")

            with self.storage.index_lock:
                code = _next_referral_code()
                while code in self.storage.referral_codes:
                    code = _next_referral_code()
                self.storage.referral_codes[code] = account_id

            account_data = {
                "id": account_id,
                "referral_code": code,
                "referred_by": referrer.id if referrer else None,
                "created_at": self.clock(),
            }
            self.storage.accounts[account_id] = account_data

        logger.info(
            "Created account %s (referral code %s, referred by %s)",
            account_id, code, account_data["referred_by"],
        )
        return Account(**account_data)

    def get_account(self, account_id: str) -> Account:
        account_data = self.storage.accounts.get(account_id)
        if not account_data:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return Account(**account_data)

    def get_by_referral_code(self, referral_code: Optional[str]) -> Optional[Account]:
        code = normalize_referral_code(referral_code)
        if code is None:
            return None
        account_id = self.storage.referral_codes.get(code)
        return self.get_account(account_id) if account_id else None

    def list_referrals(self, account_id: str) -> list[Account]:
        self.get_account(account_id)
        referrals = [
            Account(**a) for a in self.storage.accounts.values()
            if a["referred_by"] == account_id
        ]
        referrals.sort(key=lambda a: a.created_at)
        return referrals

    def get_balance(self, account_id: str) -> int:
        return self.ledger.get_balance(account_id)

    def _resolve_referrer(self, referral_code: Optional[str]) -> Optional[Account]:
        if normalize_referral_code(referral_code) is None:
            return None
        referrer = self.get_by_referral_code(referral_code)
        if referrer:
            return referrer
        if self.strict_referral_codes:
            raise InvalidReferralCodeError(f"Invalid referral code {referral_code!r}")
        logger.info("Ignoring unknown referral code %r at signup", referral_code)
        return None
