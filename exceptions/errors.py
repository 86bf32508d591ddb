"""
Custom exception classes for the application.

Only configuration problems and store failures are raised. Bad planning
values are coerced to zero where they are read and never reach here.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "PRODUCT_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# PRODUCT ERRORS
# ===================

class ProductNotFoundError(NotFoundError):
    """SKU is unknown to the configuration store."""

    def __init__(self, sku: str):
        super().__init__(
            resource="Product",
            identifier=sku,
            code="PRODUCT_NOT_FOUND"
        )


class InvalidProductSpecError(ValidationError):
    """Packaging ratio is zero or negative."""

    def __init__(self, sku: str, field: str, value: Any):
        super().__init__(
            code="PRODUCT_INVALID_SPEC",
            message=f"{field} must be greater than zero",
            details={"sku": sku, "field": field, "provided": value}
        )


# ===================
# PLANNING STORE ERRORS
# ===================

class InvalidPlanningFieldError(ValidationError):
    """Unknown planning store field."""

    def __init__(self, field: str, valid: list[str]):
        super().__init__(
            code="PLANNING_INVALID_FIELD",
            message=f"Unknown planning field: {field}",
            details={"provided": field, "valid": valid}
        )


class InvalidPlanningDateError(ValidationError):
    """Edit keyed by something that is not a calendar date."""

    def __init__(self, keys: list[str]):
        super().__init__(
            code="PLANNING_INVALID_DATE",
            message="Planning entries must be keyed by YYYY-MM-DD dates",
            details={"invalid_keys": keys}
        )


# ===================
# SCHEDULER ERRORS
# ===================

class InvalidShiftStartError(ValidationError):
    """Shift start is not an HH:MM time."""

    def __init__(self, value: str):
        super().__init__(
            code="SCHEDULER_INVALID_SHIFT_START",
            message="Shift start must be HH:MM (00:00-23:59)",
            details={"provided": value}
        )
