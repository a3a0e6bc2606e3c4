class LedgerServiceError(Exception):
    code = "LedgerServiceError"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(LedgerServiceError):
    code = "NotFound"
    status_code = 404


class AccountNotFoundError(NotFoundError):
    code = "AccountNotFound"


class TaskNotFoundError(NotFoundError):
    code = "TaskNotFound"


class ClaimNotFoundError(NotFoundError):
    code = "ClaimNotFound"


class RequestNotFoundError(NotFoundError):
    code = "RequestNotFound"


class ConflictError(LedgerServiceError):
    code = "Conflict"
    status_code = 409


class AlreadyClaimedError(ConflictError):
    code = "AlreadyClaimed"


class AlreadyCompletedError(ConflictError):
    code = "AlreadyCompleted"


class TaskExpiredError(ConflictError):
    code = "TaskExpired"


class DuplicateReferralError(ConflictError):
    code = "DuplicateReferral"


class DuplicateAccountError(ConflictError):
    code = "DuplicateAccount"


class InvalidStateTransitionError(ConflictError):
    code = "InvalidStateTransition"


class InsufficientBalanceError(LedgerServiceError):
    code = "InsufficientBalance"
    status_code = 422


class InvalidInputError(LedgerServiceError):
    code = "InvalidInput"
    status_code = 400


class InvalidReferralCodeError(InvalidInputError):
    code = "InvalidReferralCode"


class TransientFailureError(LedgerServiceError):
    code = "TransientFailure"
    status_code = 503
