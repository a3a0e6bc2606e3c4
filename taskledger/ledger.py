import logging
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
from uuid import UUID, uuid4

from .errors import AccountNotFoundError, InvalidInputError
from .models import LedgerEntry, LedgerSource
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerHistory:
    """Ledger entries of one account, newest first.

    The set of entries is fixed when the history is created; each iteration
    starts again from the newest entry and builds models lazily.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        account_id: str,
        source: Optional[LedgerSource] = None,
        since: Optional[datetime] = None,
    ):
        self._storage = storage
        self.account_id = account_id
        self.source = source
        self.since = since
        self._entry_ids = list(storage.entries_by_account.get(account_id, ()))

    def __iter__(self) -> Iterator[LedgerEntry]:
        rows = [self._storage.ledger_entries[entry_id] for entry_id in self._entry_ids]
        rows.sort(key=lambda e: (e["created_at"], e["sequence"]), reverse=True)
        for row in rows:
            if self.source is not None and row["source"] != self.source:
                continue
            if self.since is not None and row["created_at"] < self.since:
                continue
            yield LedgerEntry(**row)

    def __len__(self) -> int:
        return sum(1 for _ in self)


class Ledger:
    """Append-only record of balance-affecting events and the only writer of balances."""

    def __init__(self, storage: InMemoryStorage, clock: Optional[Clock] = None):
        self.storage = storage
        self.clock = clock or utcnow

    def append(
        self,
        account_id: str,
        amount: int,
        source: LedgerSource,
        description: str,
        reference_id: Optional[UUID] = None,
        metadata: Optional[dict] = None,
    ) -> LedgerEntry:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidInputError(f"Amount must be an integer number of cents, got {amount!r}")
        try:
            source = LedgerSource(source)
        except ValueError:
            raise InvalidInputError(f"Unknown ledger source {source!r}")

        with self.storage.lock_accounts(account_id):
            if account_id not in self.storage.accounts:
                raise AccountNotFoundError(f"Account {account_id} not found")

            entry_id = uuid4()
            entry_data = {
                "id": entry_id,
                "account_id": account_id,
                "amount": amount,
                "source": source,
                "description": description,
                "created_at": self.clock(),
                "sequence": self.storage.next_sequence(),
                "reference_id": reference_id,
                "metadata": dict(metadata or {}),
            }
            self.storage.ledger_entries[entry_id] = entry_data
            self.storage.entries_by_account.setdefault(account_id, []).append(entry_id)

        logger.info(
            "Ledger %s entry %s for %s: %+d (%s)",
            source.value, entry_id, account_id, amount, description,
        )
        return LedgerEntry(**entry_data)

    def get_balance(self, account_id: str) -> int:
        self._require_account(account_id)
        entries = self.storage.entries_by_account.get(account_id, ())
        return sum(self.storage.ledger_entries[entry_id]["amount"] for entry_id in entries)

    def get_history(
        self,
        account_id: str,
        source: Optional[LedgerSource] = None,
        since: Optional[datetime] = None,
    ) -> LedgerHistory:
        self._require_account(account_id)
        return LedgerHistory(self.storage, account_id, source=source, since=since)

    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        entry_data = self.storage.ledger_entries.get(entry_id)
        return LedgerEntry(**entry_data) if entry_data else None

    def _require_account(self, account_id: str) -> None:
        if account_id not in self.storage.accounts:
            raise AccountNotFoundError(f"Account {account_id} not found")
