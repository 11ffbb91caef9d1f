from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    INVALID_CREDENTIALS = ErrorDefinition(
        "INVALID_CREDENTIALS",
        "Invalid credentials",
        status.HTTP_401_UNAUTHORIZED,
    )
    USER_INACTIVE = ErrorDefinition(
        "USER_INACTIVE",
        "User is inactive or suspended",
        status.HTTP_403_FORBIDDEN,
    )
    PERMISSION_DENIED = ErrorDefinition(
        "PERMISSION_DENIED",
        "Permission denied",
        status.HTTP_403_FORBIDDEN,
    )
    TENANT_CONTEXT_MISSING = ErrorDefinition(
        "TENANT_CONTEXT_MISSING",
        "Tenant context is required",
        status.HTTP_403_FORBIDDEN,
    )
    CROSS_TENANT_ACCESS_DENIED = ErrorDefinition(
        "CROSS_TENANT_ACCESS_DENIED",
        "Cross-tenant access denied",
        status.HTTP_403_FORBIDDEN,
    )
    STORE_SCOPE_MISMATCH = ErrorDefinition(
        "STORE_SCOPE_MISMATCH",
        "Store scope mismatch",
        status.HTTP_403_FORBIDDEN,
    )
    TRANSFER_NOT_FOUND = ErrorDefinition(
        "TRANSFER_NOT_FOUND",
        "Transfer not found",
        status.HTTP_404_NOT_FOUND,
    )
    TRANSFER_INVALID_STATE = ErrorDefinition(
        "TRANSFER_INVALID_STATE",
        "Transfer state does not allow this action",
        status.HTTP_409_CONFLICT,
    )
    INSUFFICIENT_STOCK = ErrorDefinition(
        "INSUFFICIENT_STOCK",
        "Insufficient stock",
        status.HTTP_409_CONFLICT,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REQUIRED = ErrorDefinition(
        "IDEMPOTENCY_KEY_REQUIRED",
        "Idempotency key required",
        status.HTTP_400_BAD_REQUEST,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)


class ValidationError(AppError):
    """Malformed input; the caller must correct it and retry."""

    def __init__(self, message: str, **details):
        super().__init__(ErrorCatalog.VALIDATION_ERROR, details={"message": message, **details})
        self.message = message


class InvalidStateError(AppError):
    """The transfer's current state does not permit the attempted action."""

    def __init__(self, *, action: str, current_status: str, allowed_actions: list[str], transfer_id: str | None = None):
        details = {
            "message": f"cannot {action} a transfer in status {current_status}",
            "action": action,
            "current_status": current_status,
            "allowed_actions": allowed_actions,
        }
        if transfer_id is not None:
            details["transfer_id"] = transfer_id
        super().__init__(ErrorCatalog.TRANSFER_INVALID_STATE, details=details)
        self.action = action
        self.current_status = current_status
        self.allowed_actions = allowed_actions


class InsufficientStockError(AppError):
    """A debit would drive one or more ledger entries below zero.

    ``shortfalls`` holds one dict per offending ledger key with the requested
    and available quantities (and the transfer line when there is one).
    """

    def __init__(self, shortfalls: list[dict], message: str = "insufficient stock"):
        super().__init__(
            ErrorCatalog.INSUFFICIENT_STOCK,
            details={"message": message, "lines": shortfalls},
        )
        self.shortfalls = shortfalls


class TenantContextMissingError(AppError):
    def __init__(self, message: str = "operation requires a bound tenant scope"):
        super().__init__(ErrorCatalog.TENANT_CONTEXT_MISSING, details={"message": message})


class TransferNotFoundError(AppError):
    def __init__(self, transfer_ref: str):
        super().__init__(
            ErrorCatalog.TRANSFER_NOT_FOUND,
            details={"message": "transfer not found", "transfer": transfer_ref},
        )
