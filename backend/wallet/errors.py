from typing import Any


class WalletError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(WalletError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        details = [{"field": field, "message": message}] if field else None
        super().__init__(message, details)


class Unauthenticated(WalletError):
    status_code = 401
    code = "UNAUTHENTICATED"


class Forbidden(WalletError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(WalletError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(WalletError):
    # Duplicate keys are reported as a plain bad request.
    status_code = 400
    code = "CONFLICT"


class StorageError(WalletError):
    status_code = 500
    code = "STORAGE_ERROR"


class BackupFailed(WalletError):
    status_code = 500
    code = "BACKUP_FAILED"
