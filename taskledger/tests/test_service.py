"""
Tests for the LedgerService flows

Tests cover:
1. End-to-end earning, referral and withdrawal scenarios
2. Signup with referral codes and retried signups
3. Earnings and referral summaries
4. Domain events
"""

from datetime import datetime, timedelta, timezone

import pytest

from taskledger.errors import InsufficientBalanceError, InvalidInputError
from taskledger.models import (
    PaymentMethod,
    Platform,
    WithdrawalStatus,
)
from taskledger.service import LedgerService
from taskledger.storage import InMemoryStorage


class TestScenarios:
    """Earning, referring and withdrawing end to end."""

    def test_task_referral_withdraw_and_reject(self, service, task):
        alice = service.sign_up("alice").account
        assert service.ledger.get_balance("alice") == 0

        claim = service.tasks.claim_task("alice", task.id)
        service.tasks.complete_task(claim.id, "https://proof.example/alice.png")
        assert service.ledger.get_balance("alice") == 200

        signup = service.sign_up("bob", alice.referral_code)
        assert signup.referral_bonus.amount == 290
        assert service.ledger.get_balance("alice") == 490

        request = service.withdrawals.request_withdrawal("alice", 490, PaymentMethod.PAYPAL, "alice@example.com")
        assert service.ledger.get_balance("alice") == 0

        service.withdrawals.mark_rejected(request.id, "Payout failed")
        assert service.ledger.get_balance("alice") == 490

    def test_overdraft_attempt_leaves_balance(self, service, task):
        alice = service.sign_up("alice").account
        claim = service.tasks.claim_task("alice", task.id)
        service.tasks.complete_task(claim.id)
        service.sign_up("bob", alice.referral_code)
        entries_before = len(service.ledger.get_history("alice"))

        with pytest.raises(InsufficientBalanceError):
            service.withdrawals.request_withdrawal("alice", 500, PaymentMethod.PAYPAL, "alice@example.com")

        assert service.ledger.get_balance("alice") == 490
        assert len(service.ledger.get_history("alice")) == entries_before

    def test_balance_always_reconciles(self, service, task):
        alice = service.sign_up("alice").account
        for name in ("bob", "carol", "dave"):
            service.sign_up(name, alice.referral_code)
        claim = service.tasks.claim_task("alice", task.id)
        service.tasks.complete_task(claim.id)
        service.grant_bonus("alice", 75, "Weekend promo")
        first = service.withdrawals.request_withdrawal("alice", 300, PaymentMethod.CRYPTO, "0xabc123def")
        second = service.withdrawals.request_withdrawal("alice", 200, PaymentMethod.PAYPAL, "alice@example.com")
        service.withdrawals.mark_completed(first.id)
        service.withdrawals.mark_rejected(second.id, "Invalid email")

        for account_id in ("alice", "bob", "carol", "dave"):
            entries = list(service.ledger.get_history(account_id))
            balance = service.ledger.get_balance(account_id)
            assert balance == sum(e.amount for e in entries)
            assert balance >= 0

        # 3 * 290 + 200 + 75 - 300 = 845
        assert service.ledger.get_balance("alice") == 845


class TestSignUp:
    """Tests for signup and the referral bonus step."""

    def test_signup_without_referral(self, service):
        response = service.sign_up("alice")

        assert response.account.id == "alice"
        assert response.referral_bonus is None
        assert response.message == "Account created"

    def test_signup_with_unknown_code_still_creates_account(self, service):
        response = service.sign_up("bob", "NOSUCHCD")

        assert response.account.referred_by is None
        assert response.referral_bonus is None

    def test_strict_signup_rejects_unknown_code(self):
        strict = LedgerService(strict_referral_codes=True)

        with pytest.raises(InvalidInputError):
            strict.sign_up("bob", "NOSUCHCD")

    def test_retried_signup_does_not_double_pay(self, service):
        alice = service.sign_up("alice").account
        first = service.sign_up("bob", alice.referral_code)

        retry = service.sign_up("bob", alice.referral_code)

        assert "already exists" in retry.message.lower()
        assert retry.account == first.account
        assert retry.referral_bonus == first.referral_bonus
        assert service.ledger.get_balance("alice") == 290
        assert len(service.referrals.list_bonuses("alice")) == 1

    def test_retry_cannot_change_referrer(self, service):
        alice = service.sign_up("alice").account
        carol = service.sign_up("carol").account
        service.sign_up("bob", alice.referral_code)

        retry = service.sign_up("bob", carol.referral_code)

        assert retry.account.referred_by == "alice"
        assert service.ledger.get_balance("carol") == 0

    def test_retry_completes_missing_bonus(self, service):
        alice = service.accounts.create_account("alice")
        service.accounts.create_account("bob", alice.referral_code)

        response = service.sign_up("bob")

        assert response.referral_bonus.amount == 290
        assert service.ledger.get_balance("alice") == 290

    def test_base_package_is_configurable(self):
        custom = LedgerService(referral_base_package="professional")
        alice = custom.sign_up("alice").account

        custom.sign_up("bob", alice.referral_code)

        assert custom.ledger.get_balance("alice") == 790


class TestSummaries:
    def test_earnings_summary(self, service, clock, task):
        clock.now = datetime(2024, 4, 20, 9, 0, tzinfo=timezone.utc)
        alice = service.sign_up("alice").account
        service.grant_bonus("alice", 100, "April promo")
        clock.now = datetime(2024, 5, 14, 12, 0, tzinfo=timezone.utc)

        other = service.tasks.create_task("Other", Platform.TIKTOK, 350, clock.now + timedelta(days=1))
        claim = service.tasks.claim_task("alice", task.id)
        service.tasks.complete_task(claim.id)
        service.tasks.claim_task("alice", other.id)
        service.sign_up("bob", alice.referral_code)
        done = service.withdrawals.request_withdrawal("alice", 150, PaymentMethod.PAYPAL, "alice@example.com")
        service.withdrawals.mark_completed(done.id)
        service.withdrawals.request_withdrawal("alice", 120, PaymentMethod.PAYPAL, "alice@example.com")

        summary = service.get_earnings_summary("alice")

        assert summary.completed_tasks == 1
        assert summary.active_tasks == 1
        assert summary.task_earnings == 200
        assert summary.referrals == 1
        assert summary.referral_earnings == 290
        assert summary.bonus_earnings == 100
        assert summary.total_earnings == 590
        assert summary.monthly_earnings == 490
        assert summary.pending_withdrawals == 120
        assert summary.withdrawn == 150
        assert summary.balance == 320
        assert summary.balance == service.ledger.get_balance("alice")

    def test_rejected_withdrawal_is_not_earnings(self, service):
        service.sign_up("alice")
        service.grant_bonus("alice", 500)
        request = service.withdrawals.request_withdrawal("alice", 200, PaymentMethod.PAYPAL, "alice@example.com")
        service.withdrawals.mark_rejected(request.id, "Failed")

        summary = service.get_earnings_summary("alice")

        assert summary.total_earnings == 500
        assert summary.balance == 500

    def test_balance_figures_come_from_ledger(self, service, monkeypatch):
        """Balance views read Ledger.get_balance and never re-sum history."""
        service.sign_up("alice")
        service.grant_bonus("alice", 300)
        monkeypatch.setattr(service.ledger, "get_balance", lambda account_id: 12345)

        balance = service.get_balance("alice")
        summary = service.get_earnings_summary("alice")

        assert balance.balance == 12345
        assert balance.total_entries == 1
        assert summary.balance == 12345
        assert summary.total_earnings == 300

    def test_referral_summary(self, service):
        alice = service.sign_up("alice").account
        service.sign_up("bob", alice.referral_code)
        service.sign_up("carol", alice.referral_code)

        summary = service.get_referral_summary("alice")

        assert summary.referral_code == alice.referral_code
        assert {a.id for a in summary.referrals} == {"bob", "carol"}
        assert summary.total_earnings == 580

    def test_balance_view(self, service, clock):
        service.sign_up("alice")
        assert service.get_balance("alice").last_transaction_at is None

        service.grant_bonus("alice", 100)
        clock.advance(hours=1)
        service.grant_bonus("alice", 50)

        balance = service.get_balance("alice")
        assert balance.balance == 150
        assert balance.total_entries == 2
        assert balance.last_transaction_at == clock.now

    def test_ledger_history_pages(self, service, clock):
        service.sign_up("alice")
        for amount in (100, 200, 300):
            service.grant_bonus("alice", amount)
            clock.advance(minutes=1)

        page = service.get_ledger_history("alice", limit=2, offset=1)

        assert [e.amount for e in page.entries] == [200, 100]
        assert page.total_count == 3
        assert page.current_balance == 600

    @pytest.mark.parametrize("amount", [0, -5, 1.5])
    def test_grant_bonus_requires_positive_integer(self, service, amount):
        service.sign_up("alice")

        with pytest.raises(InvalidInputError):
            service.grant_bonus("alice", amount)


class TestEvents:
    """Tests for domain events published by the ledger core."""

    def test_events_published(self, service, task):
        seen = []
        service.events.subscribe("*", seen.append)

        alice = service.sign_up("alice").account
        claim = service.tasks.claim_task("alice", task.id)
        service.tasks.complete_task(claim.id)
        service.sign_up("bob", alice.referral_code)
        request = service.withdrawals.request_withdrawal("alice", 490, PaymentMethod.PAYPAL, "alice@example.com")
        service.withdrawals.mark_completed(request.id)

        assert [e.kind for e in seen] == [
            "TaskCompleted", "ReferralAwarded", "WithdrawalStateChanged", "WithdrawalStateChanged",
        ]
        assert seen[0].reward == 200
        assert seen[1].amount == 290
        assert [e.status for e in seen[2:]] == [WithdrawalStatus.PENDING, WithdrawalStatus.COMPLETED]

    def test_failing_subscriber_does_not_fail_operation(self, service, task):
        def broken(event):
            raise RuntimeError("push service unavailable")

        service.events.subscribe("TaskCompleted", broken)
        service.sign_up("alice")
        claim = service.tasks.claim_task("alice", task.id)

        completed = service.tasks.complete_task(claim.id)

        assert completed.ledger_entry_id is not None
        assert service.ledger.get_balance("alice") == 200

    def test_unsubscribe(self, service):
        seen = []
        service.events.subscribe("ReferralAwarded", seen.append)
        service.events.unsubscribe("ReferralAwarded", seen.append)
        alice = service.sign_up("alice").account

        service.sign_up("bob", alice.referral_code)

        assert seen == []


def test_seeded_storage_has_demo_tasks():
    seeded = LedgerService(storage=InMemoryStorage(seed=True))

    tasks = seeded.tasks.list_active_tasks()

    assert len(tasks) == 4
    assert {t.platform for t in tasks} == {
        Platform.FACEBOOK, Platform.INSTAGRAM, Platform.TWITTER, Platform.LINKEDIN,
    }
    assert all(t.reward > 0 for t in tasks)
