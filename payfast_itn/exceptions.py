"""
Exceptions raised by the Payfast integration.

Validation of an ITN never raises: stage failures are reported through
ValidationResult. These exceptions cover caller-side parameter errors and
gateway/network unavailability.
"""

from typing import Dict, Optional


class PayfastError(Exception):
    """Base exception for Payfast integration errors."""
    pass


class PaymentValidationError(PayfastError):
    """
    Raised when payment request parameters are invalid.

    Attributes:
        errors: Mapping of field name to error message
        code: Error code (INVALID_PARAMETER for bad input)
    """

    INVALID_PARAMETER = 1000

    def __init__(
        self,
        message: str = "",
        errors: Optional[Dict[str, str]] = None,
        code: int = INVALID_PARAMETER
    ):
        super().__init__(message)
        self.errors = errors or {}
        self.code = code

    def __str__(self) -> str:
        if not self.errors:
            return super().__str__()
        details = ", ".join(f"{k}: {v}" for k, v in self.errors.items())
        return f"{super().__str__()} ({details})"


class GatewayUnavailableError(PayfastError):
    """
    Raised when the gateway (or DNS) cannot be reached.

    Distinguishes "could not verify" from "rejected".
    """

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out
