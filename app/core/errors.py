"""Application error taxonomy and HTTP translation."""

from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base application error."""

    def __init__(self, message: str, code: str, http_status: int = 400):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


# -- Validation: bad input shape or range, never retried --------------------


class ValidationError(AppError):
    """Input failed shape or range validation."""

    def __init__(self, message: str, code: str = "validation_error"):
        super().__init__(message, code, status.HTTP_400_BAD_REQUEST)


class InvalidReadingError(ValidationError):
    """Meter readings are negative, decreasing, or priced at zero."""

    def __init__(self, message: str = "Invalid meter reading"):
        super().__init__(message, "invalid_reading")


class EmptyReadingSetError(ValidationError):
    """An aggregated bill was requested without any readings."""

    def __init__(self, message: str = "At least one meter reading is required"):
        super().__init__(message, "empty_reading_set")


class InvalidPaymentError(ValidationError):
    """Payment amount is not acceptable for the bill."""

    def __init__(self, message: str = "Invalid payment"):
        super().__init__(message, "invalid_payment")


# -- Not found ----------------------------------------------------------------


class NotFoundError(AppError):
    """Requested entity does not exist."""

    def __init__(self, message: str, code: str = "not_found"):
        super().__init__(message, code, status.HTTP_404_NOT_FOUND)


class BillNotFoundError(NotFoundError):
    def __init__(self, bill_id: int):
        super().__init__(f"Bill {bill_id} not found", "bill_not_found")


class MeterNotFoundError(NotFoundError):
    def __init__(self, meter_id: int):
        super().__init__(f"Meter {meter_id} not found", "meter_not_found")


class MeterReadingNotFoundError(NotFoundError):
    def __init__(self, reading_id: int):
        super().__init__(f"Meter reading {reading_id} not found", "meter_reading_not_found")


class ContractNotFoundError(NotFoundError):
    def __init__(self, contract_id: int):
        super().__init__(f"Contract {contract_id} not found", "contract_not_found")


class RoomNotFoundError(NotFoundError):
    def __init__(self, room_id: int):
        super().__init__(f"Room {room_id} not found", "room_not_found")


# -- Business rules -----------------------------------------------------------


class BusinessRuleViolation(AppError):
    """Operation is well-formed but breaks a billing rule."""

    def __init__(self, message: str, code: str, suggested_fix: str | None = None):
        super().__init__(message, code, status.HTTP_409_CONFLICT)
        self.suggested_fix = suggested_fix


class ReadingAlreadyBilledError(BusinessRuleViolation):
    """A billed reading is immutable and cannot be deleted."""

    def __init__(self, reading_id: int):
        super().__init__(
            f"Meter reading {reading_id} has already been billed",
            "reading_already_billed",
            suggested_fix="Record a correcting reading for the next period instead",
        )


class InvalidStatusTransitionError(BusinessRuleViolation):
    """The bill state machine does not allow the requested transition."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Bill cannot move from {current} to {target}",
            "invalid_status_transition",
            suggested_fix="Check the bill status before retrying",
        )


class MetadataParseError(AppError):
    """A bill's metadata blob cannot be parsed."""

    def __init__(self, message: str = "Bill metadata cannot be parsed"):
        super().__init__(message, "unparseable_metadata", status.HTTP_422_UNPROCESSABLE_ENTITY)


def error_response(error: AppError) -> dict[str, Any]:
    """Create a standardized error response."""
    body: dict[str, Any] = {
        "code": error.code,
        "message": error.message,
    }
    suggested_fix = getattr(error, "suggested_fix", None)
    if suggested_fix:
        body["suggested_fix"] = suggested_fix
    return {"error": body}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError as JSON with its HTTP status."""
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))
