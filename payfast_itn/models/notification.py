"""
ITN (Instant Transaction Notification) data models.

Represents the transport request a notification arrives in and the
notification itself, with typed accessors for the fields merchants act on.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


SIGNATURE_FIELD = 'signature'
STATUS_FIELD = 'payment_status'
AMOUNT_FIELD = 'amount_gross'

# Literal payment_status value for a successful payment
STATUS_COMPLETE = 'COMPLETE'


@dataclass(frozen=True)
class RequestContext:
    """
    Transport-level view of an incoming ITN request.

    Attributes:
        method: HTTP method of the request
        fields: Ordered body fields as received
        referer: Value of the Referer header, if any
        malformed: True if the body could not be parsed
    """

    method: str
    fields: Dict[str, str] = field(default_factory=dict)
    referer: Optional[str] = None
    malformed: bool = False


@dataclass(frozen=True)
class Notification:
    """
    An ITN received from Payfast.

    The field set keeps the order it was received in, including the
    signature field, since the signature is recomputed over that order.
    Nothing mutates a notification after intake.
    """

    # Ordered body fields, signature included
    data: Dict[str, str]

    # Signature claimed by the sender
    signature: str

    # Declared origin (Referer header)
    origin: Optional[str] = None

    @property
    def fields(self) -> Dict[str, str]:
        """Raw field set (a copy, in received order)."""
        return dict(self.data)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.data.get(key, default)

    @property
    def status(self) -> Optional[str]:
        """Payment status, or None when the field is absent."""
        return self.data.get(STATUS_FIELD)

    @property
    def is_complete(self) -> bool:
        """True only when the payment status is literally COMPLETE."""
        return self.status == STATUS_COMPLETE

    @property
    def payment_id(self) -> Optional[str]:
        """Merchant's own payment ID (m_payment_id)."""
        return self.data.get('m_payment_id')

    @property
    def pf_payment_id(self) -> Optional[str]:
        """Payfast's payment ID."""
        return self.data.get('pf_payment_id')

    @property
    def token(self) -> Optional[str]:
        """Subscription/tokenization token, sent for recurring billing."""
        return self.data.get('token') or None

    @property
    def amount_gross(self) -> Optional[float]:
        """Gross amount as a float, or None if absent or not numeric."""
        value = self.data.get(AMOUNT_FIELD)
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def short_id(self) -> str:
        """Identifier for log lines."""
        return f"{self.payment_id or '-'}/{self.pf_payment_id or '-'}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'data': self.fields,
            'signature': self.signature,
            'origin': self.origin,
            'status': self.status,
            'is_complete': self.is_complete
        }

    def __repr__(self) -> str:
        return (
            f"Notification(payment={self.short_id()}, "
            f"status={self.status})"
        )
