"""
Merchant credentials model.

Identifies the receiving Payfast account for both outbound payment
requests and inbound ITN verification.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


SANDBOX_HOST = 'sandbox.payfast.co.za'
LIVE_HOST = 'www.payfast.co.za'


@dataclass(frozen=True)
class MerchantCredentials:
    """
    Payfast merchant account credentials.

    Immutable so a single instance can be shared between handlers.

    Attributes:
        merchant_id: Merchant ID as given by Payfast
        merchant_key: Merchant key as given by Payfast
        passphrase: Optional salt passphrase set on the Payfast dashboard
        sandbox: Whether requests go to the Payfast sandbox
    """

    merchant_id: str
    merchant_key: str
    passphrase: Optional[str] = None
    sandbox: bool = True

    def __post_init__(self):
        """Validate credentials at construction time."""
        self.validate()

    def validate(self) -> None:
        """
        Validate merchant configuration.

        Raises:
            ValueError: If merchant id or key is empty
        """
        if not self.merchant_id or not str(self.merchant_id).strip():
            raise ValueError("Merchant ID is required")

        if not self.merchant_key or not str(self.merchant_key).strip():
            raise ValueError("Merchant key is required")

    @property
    def base_url(self) -> str:
        """Payfast host in use (sandbox or live)."""
        return SANDBOX_HOST if self.sandbox else LIVE_HOST

    @property
    def has_passphrase(self) -> bool:
        return self.passphrase is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MerchantCredentials':
        """
        Create credentials from a dictionary (e.g., loaded settings).

        Args:
            data: Dictionary with credential values

        Returns:
            MerchantCredentials instance
        """
        return cls(
            merchant_id=data['merchant_id'],
            merchant_key=data['merchant_key'],
            passphrase=data.get('passphrase'),
            sandbox=data.get('sandbox', True)
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary for display (excludes secrets).

        Returns:
            Dictionary representation without sensitive data
        """
        return {
            'merchant_id': self.merchant_id,
            'merchant_key': '***',
            'passphrase': '***' if self.passphrase else None,
            'sandbox': self.sandbox,
            'base_url': self.base_url
        }

    def __repr__(self) -> str:
        return (
            f"MerchantCredentials(merchant_id={self.merchant_id}, "
            f"sandbox={self.sandbox})"
        )
