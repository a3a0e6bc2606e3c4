from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class LedgerSource(str, Enum):
    TASK = "task"
    REFERRAL = "referral"
    BONUS = "bonus"
    WITHDRAWAL = "withdrawal"


class Platform(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    TIKTOK = "tiktok"
    LINKEDIN = "linkedin"
    YOUTUBE = "youtube"


class ClaimStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


class PackageType(str, Enum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class Account(BaseModel):
    id: str
    referral_code: str
    referred_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Task(BaseModel):
    id: UUID
    title: str
    description: str = ""
    platform: Platform
    reward: int
    expires_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class TaskClaim(BaseModel):
    id: UUID
    account_id: str
    task_id: UUID
    status: ClaimStatus
    claimed_at: datetime
    completed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    proof_url: Optional[str] = None
    ledger_entry_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)

    def can_complete(self) -> bool:
        return self.status == ClaimStatus.ACTIVE


class LedgerEntry(BaseModel):
    id: UUID
    account_id: str
    amount: int
    source: LedgerSource
    description: str
    created_at: datetime
    sequence: int
    reference_id: Optional[UUID] = None
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ReferralBonus(BaseModel):
    id: UUID
    referrer_id: str
    referred_id: str
    amount: int
    base_amount: int
    ledger_entry_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WithdrawalRequest(BaseModel):
    id: UUID
    account_id: str
    amount: int
    payment_method: PaymentMethod
    destination: str
    status: WithdrawalStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    debit_entry_id: UUID
    reversal_entry_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)

    def is_pending(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class Package(BaseModel):
    id: str
    name: str
    type: PackageType
    description: str
    price: int
    tasks_per_month: int
    features: list[str] = Field(default_factory=list)
    is_popular: bool = False


class CreateAccountRequest(BaseModel):
    account_id: str = Field(..., min_length=1, description="Identifier issued by the identity provider")
    referral_code: Optional[str] = Field(default=None, description="Referral code of the inviting account")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "account_id": "firebase-uid-8c1f",
            "referral_code": "9F3A01BC",
        }
    })


class CreateTaskRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    platform: Platform
    reward: int = Field(..., gt=0, description="Reward in cents")
    expires_at: datetime

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Retweet and add comment",
            "description": "Retweet the provided tweet and add your own comment.",
            "platform": "twitter",
            "reward": 275,
            "expires_at": "2030-01-01T00:00:00Z",
        }
    })


class CompleteTaskRequest(BaseModel):
    proof_url: Optional[str] = None


class CreateWithdrawalRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Amount in cents")
    payment_method: PaymentMethod
    destination: str = Field(..., min_length=5, description="Account details for the payout")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 490,
            "payment_method": "paypal",
            "destination": "payee@example.com",
        }
    })


class RejectWithdrawalRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Reason for rejection")


class GrantBonusRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Bonus in cents")
    description: str = Field(default="Promotional bonus")


class AccountBalance(BaseModel):
    account_id: str
    balance: int
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    account_id: str
    entries: list[LedgerEntry]
    total_count: int
    current_balance: int


class SignUpResponse(BaseModel):
    account: Account
    referral_bonus: Optional[ReferralBonus] = None
    message: str


class ReferralSummary(BaseModel):
    account_id: str
    referral_code: str
    referrals: list[Account]
    bonuses: list[ReferralBonus]
    total_earnings: int


class EarningsSummary(BaseModel):
    account_id: str
    completed_tasks: int
    active_tasks: int
    task_earnings: int
    referrals: int
    referral_earnings: int
    bonus_earnings: int
    total_earnings: int
    monthly_earnings: int
    pending_withdrawals: int
    withdrawn: int
    balance: int
