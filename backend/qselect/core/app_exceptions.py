"""Application-specific exceptions for consistent error handling."""

from typing import Any

from fastapi import HTTPException, status

from qselect.selection.errors import SelectionError

# HTTP status per selection error code; unknown codes are server errors
SELECTION_ERROR_STATUS = {
    "POOL_SHORTAGE": status.HTTP_409_CONFLICT,
    "DUPLICATE_EXPOSURE_WRITE": status.HTTP_409_CONFLICT,
    "STALE_POLICY_SNAPSHOT": status.HTTP_409_CONFLICT,
    "EXPOSURE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "RESERVATION_TIMEOUT": status.HTTP_503_SERVICE_UNAVAILABLE,
}

RETRY_AFTER_SECONDS = 1


class AppError(HTTPException):
    """HTTP error carrying a stable machine-readable code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(
            status_code=status_code,
            detail={"code": code, "message": message, "details": details},
            headers=headers,
        )
        self.code = code
        self.message = message
        self.details = details

    @classmethod
    def from_selection_error(
        cls,
        error: SelectionError,
        details: dict[str, Any] | list[Any] | None = None,
    ) -> "AppError":
        """Translate a selection error; retryable errors get a Retry-After header."""
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if error.retryable else None
        if error.retryable:
            details = {**(details or {}), "retryable": True}
        return cls(
            status_code=SELECTION_ERROR_STATUS.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            code=error.code,
            message=error.detail,
            details=details,
            headers=headers,
        )


def raise_app_error(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | list[Any] | None = None,
) -> None:
    """Raise an application error with standardized format."""
    raise AppError(status_code=status_code, code=code, message=message, details=details)
