import logging
from typing import Callable, Optional
from uuid import UUID, uuid4

from .errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidStateTransitionError,
    RequestNotFoundError,
)
from .events import EventBus, WithdrawalStateChanged
from .ledger import Clock, Ledger, utcnow
from .models import LedgerSource, PaymentMethod, WithdrawalRequest, WithdrawalStatus
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

DEFAULT_MIN_WITHDRAWAL = 100
MIN_DESTINATION_LENGTH = 5

PayoutExecutor = Callable[[WithdrawalRequest], None]


class WithdrawalCoordinator:
    """Withdrawal requests: pending -> completed | rejected.

    The debit is written when the request is made. A new request is also
    checked against the ledger balance less the amounts still pending, so
    pending plus requested never exceeds the balance. Rejection writes a
    compensating credit for the same amount.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: Ledger,
        min_amount: int = DEFAULT_MIN_WITHDRAWAL,
        events: Optional[EventBus] = None,
        payout_executor: Optional[PayoutExecutor] = None,
        clock: Optional[Clock] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.min_amount = min_amount
        self.events = events or EventBus()
        self.payout_executor = payout_executor
        self.clock = clock or utcnow

    def request_withdrawal(
        self,
        account_id: str,
        amount: int,
        method: PaymentMethod,
        destination: str,
    ) -> WithdrawalRequest:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidInputError("Withdrawal amount must be a positive integer number of cents")
        if amount < self.min_amount:
            raise InvalidInputError(f"Minimum withdrawal is {self.min_amount} cents")
        try:
            method = PaymentMethod(method)
        except ValueError:
            raise InvalidInputError(f"Unknown payment method {method!r}")
        if not isinstance(destination, str) or len(destination.strip()) < MIN_DESTINATION_LENGTH:
            raise InvalidInputError("Destination details are required")

        with self.storage.lock_accounts(account_id):
            if account_id not in self.storage.accounts:
                raise AccountNotFoundError(f"Account {account_id} not found")
            available = self.ledger.get_balance(account_id) - self.total(account_id, WithdrawalStatus.PENDING)
            if amount > available:
                logger.warning(
                    "Rejected withdrawal of %d for %s: only %d available",
                    amount, account_id, available,
                )
                raise InsufficientBalanceError(
                    f"Requested {amount} exceeds available balance {available}"
                )

            request_id = uuid4()
            entry = self.ledger.append(
                account_id,
                -amount,
                LedgerSource.WITHDRAWAL,
                f"Withdrawal via {method.value}",
                reference_id=request_id,
                metadata={"payment_method": method.value},
            )
            request_data = {
                "id": request_id,
                "account_id": account_id,
                "amount": amount,
                "payment_method": method,
                "destination": destination.strip(),
                "status": WithdrawalStatus.PENDING,
                "created_at": entry.created_at,
                "completed_at": None,
                "rejection_reason": None,
                "debit_entry_id": entry.id,
                "reversal_entry_id": None,
            }
            self.storage.withdrawals[request_id] = request_data
            request = WithdrawalRequest(**request_data)

        self._publish(request)
        if self.payout_executor is not None:
            try:
                self.payout_executor(request)
            except Exception:
                logger.exception("Payout hand-off failed for withdrawal %s; left pending", request_id)
        return request

    def mark_completed(self, request_id: UUID) -> WithdrawalRequest:
        owner_id = self.get_request(request_id).account_id
        with self.storage.lock_accounts(owner_id):
            request_data = self._pending_or_raise(request_id, "complete")
            request_data["status"] = WithdrawalStatus.COMPLETED
            request_data["completed_at"] = self.clock()
            request = WithdrawalRequest(**request_data)

        logger.info("Withdrawal %s of %d for %s completed", request_id, request.amount, owner_id)
        self._publish(request)
        return request

    def mark_rejected(self, request_id: UUID, reason: str) -> WithdrawalRequest:
        owner_id = self.get_request(request_id).account_id
        with self.storage.lock_accounts(owner_id):
            request_data = self._pending_or_raise(request_id, "reject")
            entry = self.ledger.append(
                owner_id,
                request_data["amount"],
                LedgerSource.WITHDRAWAL,
                f"Reversal of withdrawal {request_id}: {reason}",
                reference_id=request_id,
                metadata={"reversal_of": str(request_data["debit_entry_id"]), "reason": reason},
            )
            request_data.update({
                "status": WithdrawalStatus.REJECTED,
                "completed_at": entry.created_at,
                "rejection_reason": reason,
                "reversal_entry_id": entry.id,
            })
            request = WithdrawalRequest(**request_data)

        logger.info("Withdrawal %s of %d for %s rejected: %s", request_id, request.amount, owner_id, reason)
        self._publish(request)
        return request

    def get_request(self, request_id: UUID) -> WithdrawalRequest:
        request_data = self.storage.withdrawals.get(request_id)
        if not request_data:
            raise RequestNotFoundError(f"Withdrawal request {request_id} not found")
        return WithdrawalRequest(**request_data)

    def list_requests(
        self, account_id: str, status: Optional[WithdrawalStatus] = None
    ) -> list[WithdrawalRequest]:
        requests = [
            WithdrawalRequest(**w) for w in list(self.storage.withdrawals.values())
            if w["account_id"] == account_id and (status is None or w["status"] == status)
        ]
        requests.sort(key=lambda w: w.created_at, reverse=True)
        return requests

    def total(self, account_id: str, status: WithdrawalStatus) -> int:
        return sum(w.amount for w in self.list_requests(account_id, status))

    def _pending_or_raise(self, request_id: UUID, action: str) -> dict:
        request_data = self.storage.withdrawals[request_id]
        if request_data["status"] != WithdrawalStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Cannot {action} withdrawal in {request_data['status'].value} state"
            )
        return request_data

    def _publish(self, request: WithdrawalRequest) -> None:
        self.events.publish(WithdrawalStateChanged(
            account_id=request.account_id,
            occurred_at=request.completed_at or request.created_at,
            request_id=request.id,
            amount=request.amount,
            status=request.status,
            reason=request.rejection_reason,
        ))
