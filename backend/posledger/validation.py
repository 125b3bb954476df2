from __future__ import annotations

import re
from typing import Any


# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

_NON_DIGITS = re.compile(r"\D")


class TransactionError(Exception):
    """Base for errors a caller can act on. Maps to a 4xx/5xx response."""
    code = "internal"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self), "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(TransactionError):
    """400-level input problem."""
    code = "validation"
    http_status = 400


class NotFoundError(TransactionError):
    """404: unknown transaction or product within the caller's tenant."""
    code = "not_found"
    http_status = 404


class ConflictError(TransactionError):
    """409-level business rule conflict (e.g., already reversed)."""
    code = "conflict"
    http_status = 409


def parse_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON input.

    Accepts ints and plain digit strings (optional leading minus).
    Rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def parse_amount_cents(value: Any, field: str) -> int:
    """Integer cents within MAX_AMOUNT_CENTS (sign is left to the caller)."""
    cents = parse_int(value, field)
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS} cents")
    return cents


def digits_only(value: Any) -> str:
    return _NON_DIGITS.sub("", str(value or ""))


def validate_customer_phone(value: Any) -> str:
    """
    Customer phone for mobile payments: 10-15 digits once punctuation,
    spaces and a leading '+' are stripped.
    """
    if value is None or not str(value).strip():
        raise ValidationError("customer_phone is required for mobile payments")
    digits = digits_only(value)
    if len(digits) < 10 or len(digits) > 15:
        raise ValidationError("customer_phone is malformed", details={"customer_phone": str(value)})
    return digits
