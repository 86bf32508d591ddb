"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    DatabaseError,

    # Product-specific
    ProductNotFoundError,
    InvalidProductSpecError,

    # Planning store
    InvalidPlanningFieldError,
    InvalidPlanningDateError,

    # Scheduler
    InvalidShiftStartError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "DatabaseError",

    # Product
    "ProductNotFoundError",
    "InvalidProductSpecError",

    # Planning store
    "InvalidPlanningFieldError",
    "InvalidPlanningDateError",

    # Scheduler
    "InvalidShiftStartError",
]
