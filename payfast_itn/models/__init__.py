"""Data models for Payfast payments and ITNs."""

from .credentials import MerchantCredentials
from .notification import Notification, RequestContext
from .validation import FailureCategory, FailureReason, ValidationResult, ValidationStage
from .payment import (
    PaymentMethod,
    PaymentMode,
    PaymentRequest,
    SplitPayment,
    SubscriptionDetails,
    SubscriptionFrequency,
)

__all__ = [
    'FailureCategory',
    'FailureReason',
    'MerchantCredentials',
    'Notification',
    'PaymentMethod',
    'PaymentMode',
    'PaymentRequest',
    'RequestContext',
    'SplitPayment',
    'SubscriptionDetails',
    'SubscriptionFrequency',
    'ValidationResult',
    'ValidationStage',
]
