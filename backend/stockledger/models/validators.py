"""Model-level validation utilities for data integrity.

Reusable validators that enforce quantity rules at the ORM level so that
no service or endpoint can persist an impossible stock figure.
"""

from decimal import Decimal


def _as_decimal(value) -> Decimal:
    return Decimal(str(value)) if not isinstance(value, Decimal) else value


def non_negative(key: str, value):
    """Validate that a numeric value is >= 0."""
    if value is not None and _as_decimal(value) < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def non_zero(key: str, value):
    """Validate that a signed delta actually moves stock."""
    if value is not None and _as_decimal(value) == 0:
        raise ValueError(f"{key} must not be zero")
    return value


def validate_list(key: str, value):
    """Validate that a JSON column value is a list (or None)."""
    if value is not None and not isinstance(value, list):
        raise ValueError(f"{key} must be a list, got {type(value).__name__}")
    return value
