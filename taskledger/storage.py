import logging
import threading
from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional
from uuid import UUID, uuid4

from .errors import TransientFailureError
from .models import Platform

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0


class InMemoryStorage:
    """Process-local store for accounts, tasks, claims, ledger entries and withdrawals.

    Records are kept as plain dicts and turned into models by the components
    that own them. Every write that touches an account's records must happen
    inside ``lock_accounts`` for that account.
    """

    def __init__(self, seed: bool = False, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.accounts: dict[str, dict] = {}
        self.referral_codes: dict[str, str] = {}
        self.tasks: dict[UUID, dict] = {}
        self.claims: dict[UUID, dict] = {}
        self.claim_index: dict[tuple[str, UUID], UUID] = {}
        self.ledger_entries: dict[UUID, dict] = {}
        self.entries_by_account: dict[str, list[UUID]] = {}
        self.referral_bonuses: dict[UUID, dict] = {}
        self.referral_index: dict[tuple[str, str], UUID] = {}
        self.withdrawals: dict[UUID, dict] = {}

        self.lock_timeout = lock_timeout
        self.index_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._sequence = 0

        if seed:
            self._seed_data()

    def next_sequence(self) -> int:
        with self._locks_guard:
            self._sequence += 1
            return self._sequence

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.RLock()
            return lock

    @contextmanager
    def lock_accounts(self, *account_ids: str) -> Iterator[None]:
        """Hold the locks of every given account, acquired in sorted order.

        A timed-out acquisition is retried once; nothing has been written at
        that point, so the retry is safe. A second timeout raises
        ``TransientFailureError``.
        """
        ids = sorted(set(account_ids))
        with ExitStack() as stack:
            for account_id in ids:
                lock = self._lock_for(account_id)
                if not self._acquire(lock, account_id):
                    raise TransientFailureError(
                        f"Account {account_id} is busy, retry the request"
                    )
                stack.callback(lock.release)
            yield

    def _acquire(self, lock: threading.RLock, account_id: str) -> bool:
        for attempt in (1, 2):
            if lock.acquire(timeout=self.lock_timeout):
                return True
            logger.warning("Lock timeout on account %s (attempt %d)", account_id, attempt)
        return False

    def _seed_data(self, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        demo_tasks = [
            ("Like and comment on Business Post",
             "Visit the provided link, like the post and leave a thoughtful comment about the content.",
             Platform.FACEBOOK, 200, 2),
            ("Follow account and like recent posts",
             "Follow the account and like their 3 most recent posts. Screenshot proof required.",
             Platform.INSTAGRAM, 350, 1),
            ("Retweet and add comment",
             "Retweet the provided tweet and add your own comment or thoughts about it.",
             Platform.TWITTER, 275, 3),
            ("Share article on LinkedIn",
             "Share the provided article on your LinkedIn profile with a professional comment.",
             Platform.LINKEDIN, 400, 5),
        ]
        for title, description, platform, reward, days in demo_tasks:
            task_id = uuid4()
            self.tasks[task_id] = {
                "id": task_id, "title": title, "description": description,
                "platform": platform, "reward": reward,
                "expires_at": now + timedelta(days=days), "created_at": now,
            }
