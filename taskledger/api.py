import hmac
import logging
import uuid
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .catalog import list_packages
from .config import Settings, get_settings
from .errors import ClaimNotFoundError, LedgerServiceError, RequestNotFoundError
from .logging_setup import setup_logging
from .models import (
    Account,
    AccountBalance,
    CompleteTaskRequest,
    CreateAccountRequest,
    CreateTaskRequest,
    CreateWithdrawalRequest,
    EarningsSummary,
    GrantBonusRequest,
    LedgerEntry,
    LedgerHistoryResponse,
    LedgerSource,
    Package,
    ReferralSummary,
    RejectWithdrawalRequest,
    SignUpResponse,
    Task,
    TaskClaim,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter()


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerServiceError)
    async def _ledger_error_handler(_: Request, exc: LedgerServiceError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"code": "InvalidInput", "message": "Invalid request", "detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"code": "InternalError", "message": "Internal server error"},
        )


def get_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def current_account_id(x_account_id: str = Header(..., alias="X-Account-ID")) -> str:
    return x_account_id


def require_admin(request: Request, x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    if not x_admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing admin token")
    expected = request.app.state.settings.ADMIN_TOKEN
    if not expected or not hmac.compare_digest(x_admin_token.encode(), expected.encode()):
        logger.warning("Rejected admin call to %s %s", request.method, request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin token")


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "task-ledger"}


@router.get("/packages", response_model=list[Package], tags=["Packages"])
def get_packages() -> list[Package]:
    return list_packages()


@router.post("/accounts", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def create_account(request: CreateAccountRequest, service: LedgerService = Depends(get_service)) -> SignUpResponse:
    return service.sign_up(request.account_id, request.referral_code)


@router.get("/accounts/{account_id}", response_model=Account, tags=["Accounts"])
def get_account(account_id: str, service: LedgerService = Depends(get_service)) -> Account:
    return service.accounts.get_account(account_id)


@router.get("/accounts/{account_id}/balance", response_model=AccountBalance, tags=["Accounts"])
def get_account_balance(account_id: str, service: LedgerService = Depends(get_service)) -> AccountBalance:
    return service.get_balance(account_id)


@router.get("/accounts/{account_id}/ledger", response_model=LedgerHistoryResponse, tags=["Accounts"])
def get_account_ledger(
    account_id: str,
    limit: int = 50,
    offset: int = 0,
    source: Optional[LedgerSource] = None,
    service: LedgerService = Depends(get_service),
) -> LedgerHistoryResponse:
    return service.get_ledger_history(account_id, limit=max(limit, 0), offset=max(offset, 0), source=source)


@router.get("/accounts/{account_id}/summary", response_model=EarningsSummary, tags=["Accounts"])
def get_earnings_summary(account_id: str, service: LedgerService = Depends(get_service)) -> EarningsSummary:
    return service.get_earnings_summary(account_id)


@router.get("/accounts/{account_id}/referrals", response_model=ReferralSummary, tags=["Referrals"])
def get_referrals(account_id: str, service: LedgerService = Depends(get_service)) -> ReferralSummary:
    return service.get_referral_summary(account_id)


@router.post(
    "/accounts/{account_id}/bonuses",
    response_model=LedgerEntry,
    status_code=status.HTTP_201_CREATED,
    tags=["Accounts"],
    dependencies=[Depends(require_admin)],
)
def grant_bonus(
    account_id: str, request: GrantBonusRequest, service: LedgerService = Depends(get_service)
) -> LedgerEntry:
    return service.grant_bonus(account_id, request.amount, request.description)


@router.get("/accounts/{account_id}/claims", response_model=list[TaskClaim], tags=["Tasks"])
def list_claims(account_id: str, service: LedgerService = Depends(get_service)) -> list[TaskClaim]:
    service.accounts.get_account(account_id)
    return service.tasks.list_claims(account_id)


@router.get("/accounts/{account_id}/withdrawals", response_model=list[WithdrawalRequest], tags=["Withdrawals"])
def list_withdrawals(
    account_id: str,
    status_filter: Optional[WithdrawalStatus] = Query(default=None, alias="status"),
    service: LedgerService = Depends(get_service),
) -> list[WithdrawalRequest]:
    service.accounts.get_account(account_id)
    return service.withdrawals.list_requests(account_id, status_filter)


@router.get("/tasks", response_model=list[Task], tags=["Tasks"])
def list_active_tasks(service: LedgerService = Depends(get_service)) -> list[Task]:
    return service.tasks.list_active_tasks()


@router.post(
    "/tasks",
    response_model=Task,
    status_code=status.HTTP_201_CREATED,
    tags=["Tasks"],
    dependencies=[Depends(require_admin)],
)
def create_task(request: CreateTaskRequest, service: LedgerService = Depends(get_service)) -> Task:
    return service.tasks.create_task(
        title=request.title,
        description=request.description,
        platform=request.platform,
        reward=request.reward,
        expires_at=request.expires_at,
    )


@router.get("/tasks/{task_id}", response_model=Task, tags=["Tasks"])
def get_task(task_id: UUID, service: LedgerService = Depends(get_service)) -> Task:
    return service.tasks.get_task(task_id)


@router.post("/tasks/{task_id}/claim", response_model=TaskClaim, status_code=status.HTTP_201_CREATED, tags=["Tasks"])
def claim_task(
    task_id: UUID,
    account_id: str = Depends(current_account_id),
    service: LedgerService = Depends(get_service),
) -> TaskClaim:
    return service.tasks.claim_task(account_id, task_id)


@router.post("/tasks/claims/{claim_id}/complete", response_model=TaskClaim, tags=["Tasks"])
def complete_task(
    claim_id: UUID,
    request: Optional[CompleteTaskRequest] = None,
    account_id: str = Depends(current_account_id),
    service: LedgerService = Depends(get_service),
) -> TaskClaim:
    if service.tasks.get_claim(claim_id).account_id != account_id:
        raise ClaimNotFoundError(f"Claim {claim_id} not found")
    return service.tasks.complete_task(claim_id, request.proof_url if request else None)


@router.post("/withdrawals", response_model=WithdrawalRequest, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def request_withdrawal(
    request: CreateWithdrawalRequest,
    account_id: str = Depends(current_account_id),
    service: LedgerService = Depends(get_service),
) -> WithdrawalRequest:
    return service.withdrawals.request_withdrawal(
        account_id, request.amount, request.payment_method, request.destination,
    )


@router.get("/withdrawals/{request_id}", response_model=WithdrawalRequest, tags=["Withdrawals"])
def get_withdrawal(
    request_id: UUID,
    account_id: str = Depends(current_account_id),
    service: LedgerService = Depends(get_service),
) -> WithdrawalRequest:
    withdrawal = service.withdrawals.get_request(request_id)
    if withdrawal.account_id != account_id:
        raise RequestNotFoundError(f"Withdrawal request {request_id} not found")
    return withdrawal


@router.post(
    "/withdrawals/{request_id}/complete",
    response_model=WithdrawalRequest,
    tags=["Withdrawals"],
    dependencies=[Depends(require_admin)],
)
def complete_withdrawal(request_id: UUID, service: LedgerService = Depends(get_service)) -> WithdrawalRequest:
    return service.withdrawals.mark_completed(request_id)


@router.post(
    "/withdrawals/{request_id}/reject",
    response_model=WithdrawalRequest,
    tags=["Withdrawals"],
    dependencies=[Depends(require_admin)],
)
def reject_withdrawal(
    request_id: UUID, request: RejectWithdrawalRequest, service: LedgerService = Depends(get_service)
) -> WithdrawalRequest:
    return service.withdrawals.mark_rejected(request_id, request.reason)


def create_app(
    service: Optional[LedgerService] = None,
    settings: Optional[Settings] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Earnings ledger for social tasks, referral bonuses and withdrawals",
        version="1.0.0",
        debug=settings.DEBUG,
        root_path=root_path,
    )
    app.state.settings = settings
    app.state.ledger_service = service or LedgerService.from_settings(settings)
    app.include_router(router)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
