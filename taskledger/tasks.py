import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    AccountNotFoundError,
    AlreadyClaimedError,
    AlreadyCompletedError,
    ClaimNotFoundError,
    InvalidInputError,
    TaskExpiredError,
    TaskNotFoundError,
)
from .events import EventBus, TaskCompleted
from .ledger import Clock, Ledger, utcnow
from .models import ClaimStatus, LedgerSource, Platform, Task, TaskClaim
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class TaskRegistry:
    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: Ledger,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.events = events or EventBus()
        self.clock = clock or utcnow

    def create_task(
        self,
        title: str,
        platform: Platform,
        reward: int,
        expires_at: datetime,
        description: str = "",
    ) -> Task:
        if isinstance(reward, bool) or not isinstance(reward, int) or reward <= 0:
            raise InvalidInputError("Task reward must be a positive integer number of cents")
        if expires_at.tzinfo is None:
            raise InvalidInputError("Task expiry must be timezone-aware")
        try:
            platform = Platform(platform)
        except ValueError:
            raise InvalidInputError(f"Unknown platform {platform!r}")

        task_id = uuid4()
        task_data = {
            "id": task_id,
            "title": title,
            "description": description,
            "platform": platform,
            "reward": reward,
            "expires_at": expires_at,
            "created_at": self.clock(),
        }
        with self.storage.index_lock:
            self.storage.tasks[task_id] = task_data
        logger.info("Created %s task %s worth %d", platform.value, task_id, reward)
        return Task(**task_data)

    def get_task(self, task_id: UUID) -> Task:
        task_data = self.storage.tasks.get(task_id)
        if not task_data:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return Task(**task_data)

    def list_tasks(self) -> list[Task]:
        return [Task(**t) for t in list(self.storage.tasks.values())]

    def list_active_tasks(self, now: Optional[datetime] = None) -> list[Task]:
        now = now or self.clock()
        return [task for task in self.list_tasks() if not task.is_expired(now)]

    def claim_task(self, account_id: str, task_id: UUID) -> TaskClaim:
        if account_id not in self.storage.accounts:
            raise AccountNotFoundError(f"Account {account_id} not found")
        task = self.get_task(task_id)

        with self.storage.lock_accounts(account_id):
            if (account_id, task_id) in self.storage.claim_index:
                raise AlreadyClaimedError(f"Task {task_id} already claimed by {account_id}")
            now = self.clock()
            if task.is_expired(now):
                raise TaskExpiredError(f"Task {task_id} expired at {task.expires_at.isoformat()}")

            claim_id = uuid4()
            claim_data = {
                "id": claim_id,
                "account_id": account_id,
                "task_id": task_id,
                "status": ClaimStatus.ACTIVE,
                "claimed_at": now,
                "completed_at": None,
                "expired_at": None,
                "proof_url": None,
                "ledger_entry_id": None,
            }
            self.storage.claims[claim_id] = claim_data
            self.storage.claim_index[(account_id, task_id)] = claim_id

        logger.info("Account %s claimed task %s (claim %s)", account_id, task_id, claim_id)
        return TaskClaim(**claim_data)

    def get_claim(self, claim_id: UUID) -> TaskClaim:
        claim_data = self.storage.claims.get(claim_id)
        if not claim_data:
            raise ClaimNotFoundError(f"Claim {claim_id} not found")
        return TaskClaim(**claim_data)

    def list_claims(self, account_id: str, status: Optional[ClaimStatus] = None) -> list[TaskClaim]:
        claims = [
            TaskClaim(**c) for c in list(self.storage.claims.values())
            if c["account_id"] == account_id and (status is None or c["status"] == status)
        ]
        claims.sort(key=lambda c: c.claimed_at, reverse=True)
        return claims

    def complete_task(self, claim_id: UUID, proof: Optional[str] = None) -> TaskClaim:
        """Mark an active claim completed and credit the task reward to its owner.

        The ledger credit is written first, under the owner's lock; the claim
        update that follows cannot fail, so a completed claim always has its
        credit and a credit always has its completed claim.
        """
        owner_id = self.get_claim(claim_id).account_id

        with self.storage.lock_accounts(owner_id):
            claim_data = self.storage.claims[claim_id]
            if claim_data["status"] != ClaimStatus.ACTIVE:
                raise AlreadyCompletedError(
                    f"Claim {claim_id} is {claim_data['status'].value}, not active"
                )
            task = self.get_task(claim_data["task_id"])
            now = self.clock()
            if task.is_expired(now):
                self._expire(claim_data, now)
                raise TaskExpiredError(f"Task {task.id} expired at {task.expires_at.isoformat()}")

            entry = self.ledger.append(
                owner_id,
                task.reward,
                LedgerSource.TASK,
                f"Task reward: {task.title}",
                reference_id=claim_id,
                metadata={"task_id": str(task.id), "platform": task.platform.value},
            )
            claim_data.update({
                "status": ClaimStatus.COMPLETED,
                "completed_at": now,
                "proof_url": proof,
                "ledger_entry_id": entry.id,
            })
            claim = TaskClaim(**claim_data)

        self.events.publish(TaskCompleted(
            account_id=owner_id, occurred_at=now,
            claim_id=claim_id, task_id=task.id, reward=task.reward,
        ))
        return claim

    def expire_claims(self, now: Optional[datetime] = None) -> list[TaskClaim]:
        now = now or self.clock()
        expired = []
        for claim_id, claim_data in list(self.storage.claims.items()):
            if claim_data["status"] != ClaimStatus.ACTIVE:
                continue
            task_data = self.storage.tasks.get(claim_data["task_id"])
            if task_data is None or task_data["expires_at"] > now:
                continue
            with self.storage.lock_accounts(claim_data["account_id"]):
                if claim_data["status"] == ClaimStatus.ACTIVE:
                    self._expire(claim_data, now)
                    expired.append(TaskClaim(**claim_data))
        if expired:
            logger.info("Expired %d task claims", len(expired))
        return expired

    def _expire(self, claim_data: dict, now: datetime) -> None:
        claim_data["status"] = ClaimStatus.EXPIRED
        claim_data["expired_at"] = now
