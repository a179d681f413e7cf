"""Services module for Payfast signing and ITN validation."""

from .signer import Signer, canonical_string, generate_signature
from .intake import NotificationIntake
from .origin import DnsOriginTrustPolicy, OriginTrustPolicy, StaticOriginTrustPolicy
from .confirmation import ConfirmationClient, PayfastConfirmationClient
from .itn_validator import ITNValidator
from .onsite import OnsitePaymentService

__all__ = [
    'ConfirmationClient',
    'DnsOriginTrustPolicy',
    'ITNValidator',
    'NotificationIntake',
    'OnsitePaymentService',
    'OriginTrustPolicy',
    'PayfastConfirmationClient',
    'Signer',
    'StaticOriginTrustPolicy',
    'canonical_string',
    'generate_signature',
]
