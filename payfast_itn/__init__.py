"""Payfast payment requests and ITN (Instant Transaction Notification) verification."""

from .exceptions import GatewayUnavailableError, PayfastError, PaymentValidationError
from .models import (
    MerchantCredentials,
    Notification,
    PaymentRequest,
    RequestContext,
    ValidationResult,
)
from .services import ITNValidator, NotificationIntake, Signer, generate_signature

__version__ = '0.1.0'

__all__ = [
    'GatewayUnavailableError',
    'ITNValidator',
    'MerchantCredentials',
    'Notification',
    'NotificationIntake',
    'PayfastError',
    'PaymentRequest',
    'PaymentValidationError',
    'RequestContext',
    'Signer',
    'ValidationResult',
    'generate_signature',
]
