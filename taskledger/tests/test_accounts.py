import pytest

from taskledger.accounts import AccountStore, normalize_referral_code
from taskledger.errors import (
    AccountNotFoundError,
    DuplicateAccountError,
    InvalidInputError,
    InvalidReferralCodeError,
)
from taskledger.ledger import Ledger
from taskledger.models import LedgerSource
from taskledger.storage import InMemoryStorage


class TestCreateAccount:
    """Tests for account creation and referral links."""

    def test_create_account_issues_referral_code(self, service):
        account = service.accounts.create_account("alice")

        assert account.id == "alice"
        assert len(account.referral_code) == 8
        assert account.referred_by is None

    def test_referral_codes_are_unique(self, service):
        codes = {service.accounts.create_account(f"user-{i}").referral_code for i in range(50)}

        assert len(codes) == 50

    def test_create_account_with_referral_code_links_referrer(self, service):
        alice = service.accounts.create_account("alice")

        bob = service.accounts.create_account("bob", alice.referral_code)

        assert bob.referred_by == "alice"

    def test_referral_code_lookup_ignores_case_and_whitespace(self, service):
        alice = service.accounts.create_account("alice")

        bob = service.accounts.create_account("bob", f"  {alice.referral_code.lower()} ")

        assert bob.referred_by == "alice"

    def test_unknown_referral_code_is_ignored_by_default(self, service):
        bob = service.accounts.create_account("bob", "NOSUCHCD")

        assert bob.referred_by is None

    def test_unknown_referral_code_rejected_in_strict_mode(self):
        storage = InMemoryStorage()
        accounts = AccountStore(storage, Ledger(storage), strict_referral_codes=True)

        with pytest.raises(InvalidReferralCodeError):
            accounts.create_account("bob", "NOSUCHCD")
        assert "bob" not in storage.accounts

    def test_duplicate_account_rejected(self, service):
        service.accounts.create_account("alice")

        with pytest.raises(DuplicateAccountError):
            service.accounts.create_account("alice")

    @pytest.mark.parametrize("account_id", ["", "   ", None])
    def test_blank_account_id_rejected(self, service, account_id):
        with pytest.raises(InvalidInputError):
            service.accounts.create_account(account_id)

    def test_padded_account_id_cannot_shadow_existing(self, service):
        service.accounts.create_account("alice")

        for padded in (" alice", "alice ", "\talice"):
            with pytest.raises(InvalidInputError):
                service.accounts.create_account(padded)

        assert list(service.storage.accounts) == ["alice"]


class TestLookups:
    def test_get_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            service.accounts.get_account("ghost")

    def test_get_by_referral_code(self, service):
        alice = service.accounts.create_account("alice")

        assert service.accounts.get_by_referral_code(alice.referral_code) == alice
        assert service.accounts.get_by_referral_code("missing") is None
        assert service.accounts.get_by_referral_code(None) is None

    def test_list_referrals(self, service, clock):
        alice = service.accounts.create_account("alice")
        service.accounts.create_account("bob", alice.referral_code)
        clock.advance(minutes=1)
        service.accounts.create_account("carol", alice.referral_code)
        service.accounts.create_account("dave")

        referrals = service.accounts.list_referrals("alice")

        assert [a.id for a in referrals] == ["bob", "carol"]

    def test_balance_reads_through_ledger(self, service):
        service.accounts.create_account("alice")
        service.ledger.append("alice", 120, LedgerSource.BONUS, "Bonus")

        assert service.accounts.get_balance("alice") == 120


def test_normalize_referral_code():
    assert normalize_referral_code(" ab12cd34 ") == "AB12CD34"
    assert normalize_referral_code("   ") is None
    assert normalize_referral_code(None) is None
