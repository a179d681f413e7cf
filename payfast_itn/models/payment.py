"""
Payment request data models.

Builds the signed field sets merchants send to Payfast: once-off
payments, subscriptions and tokenization payments, plus split-payment
instructions.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from ..exceptions import PaymentValidationError
from ..services.signer import include_non_empty, sign_fields
from .credentials import LIVE_HOST, MerchantCredentials

# Payfast rejects recurring amounts below this (ZAR)
MIN_RECURRING_AMOUNT = 5.00


class PaymentMode(str, Enum):
    """Kinds of payment request."""
    ONCE = "once"
    SUBSCRIPTION = "subscription"
    TOKENIZATION = "tokenization"

    @property
    def subscription_type(self) -> Optional[int]:
        """Payfast subscription_type code (1 subscription, 2 tokenization)."""
        return {
            PaymentMode.SUBSCRIPTION: 1,
            PaymentMode.TOKENIZATION: 2,
        }.get(self)

    @property
    def is_recurring(self) -> bool:
        return self != PaymentMode.ONCE


class PaymentMethod(str, Enum):
    """Single payment method to offer at checkout."""
    EFT = "ef"
    CREDIT_CARD = "cc"
    DEBIT_CARD = "dc"
    MASTERPASS_SCAN_TO_PAY = "mp"
    MOBICRED = "mc"
    SCODE = "sc"
    SNAPSCAN = "ss"
    ZAPPER = "zp"
    MORETYME = "mt"
    STORE_CARD = "rc"
    MUKURU = "mu"
    APPLE_PAY = "ap"
    SAMSUNG_PAY = "sp"
    CAPITEC_PAY = "cp"
    GOOGLE_PAY = "gp"

    @property
    def description(self) -> str:
        return _METHOD_DESCRIPTIONS[self]


_METHOD_DESCRIPTIONS = {
    PaymentMethod.EFT: 'Electronic Funds Transfer',
    PaymentMethod.CREDIT_CARD: 'Credit Card',
    PaymentMethod.DEBIT_CARD: 'Debit Card',
    PaymentMethod.MASTERPASS_SCAN_TO_PAY: 'Masterpass Scan to Pay',
    PaymentMethod.MOBICRED: 'Mobicred',
    PaymentMethod.SCODE: 'SCode',
    PaymentMethod.SNAPSCAN: 'SnapScan',
    PaymentMethod.ZAPPER: 'Zapper',
    PaymentMethod.MORETYME: 'MoreTyme',
    PaymentMethod.STORE_CARD: 'Store Card',
    PaymentMethod.MUKURU: 'Mukuru',
    PaymentMethod.APPLE_PAY: 'Apple Pay',
    PaymentMethod.SAMSUNG_PAY: 'Samsung Pay',
    PaymentMethod.CAPITEC_PAY: 'Capitec Pay',
    PaymentMethod.GOOGLE_PAY: 'Google Pay',
}


class SubscriptionFrequency(int, Enum):
    """Billing cycle period."""
    DAILY = 1
    WEEKLY = 2
    MONTHLY = 3
    QUARTERLY = 4
    BIANNUALLY = 5
    ANNUALLY = 6


def format_amount(amount: float) -> str:
    """Amount in rands with two decimals, e.g. 100 -> '100.00'."""
    return f"{float(amount):.2f}"


def _flag(value: Optional[bool]) -> Optional[str]:
    if value is None:
        return None
    return '1' if value else '0'


@dataclass
class CustomerDetails:
    """Buyer details (all optional)."""
    name_first: Optional[str] = None
    name_last: Optional[str] = None
    email_address: Optional[str] = None
    cell_number: Optional[str] = None


@dataclass
class TransactionDetails:
    """
    Details of what is being paid for.

    Attributes:
        amount: Amount in ZAR
        item_name: Item name, or order number for multiple items
        item_description: Optional description
        m_payment_id: Unique payment ID on the merchant's system
        email_confirmation: Send the merchant a confirmation email
        confirmation_address: Override address for that email
        payment_method: Restrict checkout to a single method
    """
    amount: float
    item_name: str
    item_description: Optional[str] = None
    m_payment_id: Optional[str] = None
    email_confirmation: Optional[bool] = True
    confirmation_address: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None


@dataclass
class SubscriptionDetails:
    """
    Recurring billing settings.

    Attributes:
        frequency: Cycle period
        cycles: Number of payments; 0 for indefinite
        billing_date: Date future payments start (defaults to today on Payfast)
        recurring_amount: Future amount; defaults to the initial amount
        notify_email: Email the merchant before trial end / amount increase
        notify_webhook: Webhook the merchant before trial end / amount increase
        notify_buyer: Email the buyer before trial end / amount increase
    """
    frequency: SubscriptionFrequency = SubscriptionFrequency.MONTHLY
    cycles: int = 0
    billing_date: Optional[date] = None
    recurring_amount: Optional[float] = None
    notify_email: Optional[bool] = None
    notify_webhook: Optional[bool] = None
    notify_buyer: Optional[bool] = None

    def validate(self) -> None:
        errors = {}
        if self.cycles < 0:
            errors['cycles'] = 'Must be 0 (indefinite) or a positive number.'
        if self.recurring_amount is not None and self.recurring_amount < MIN_RECURRING_AMOUNT:
            errors['recurring_amount'] = (
                f'Must be at least {format_amount(MIN_RECURRING_AMOUNT)}.'
            )
        if errors:
            raise PaymentValidationError("Invalid subscription details.", errors)


@dataclass
class PaymentRequest:
    """
    A payment request to redirect a customer to Payfast with.

    One builder covers every payment mode; recurring modes additionally
    carry SubscriptionDetails and require a passphrase.

    Usage:
        request = PaymentRequest(credentials, notify_url='https://shop/itn')
        request.set_transaction_details(16.99, 'Test')
        url = request.payment_url()
    """

    credentials: MerchantCredentials
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    notify_url: Optional[str] = None
    fica_idnumber: Optional[str] = None
    mode: PaymentMode = PaymentMode.ONCE
    subscription: Optional[SubscriptionDetails] = None
    customer: CustomerDetails = field(default_factory=CustomerDetails)
    transaction: Optional[TransactionDetails] = None

    def __post_init__(self):
        if isinstance(self.mode, str):
            self.mode = PaymentMode(self.mode)

    def set_customer_details(
        self,
        name_first: Optional[str] = None,
        name_last: Optional[str] = None,
        email_address: Optional[str] = None,
        cell_number: Optional[str] = None
    ) -> None:
        """Set the (optional) buyer details."""
        self.customer = CustomerDetails(
            name_first=name_first,
            name_last=name_last,
            email_address=email_address,
            cell_number=cell_number
        )

    def set_transaction_details(
        self,
        amount: float,
        item_name: str,
        item_description: Optional[str] = None,
        m_payment_id: Optional[str] = None,
        email_confirmation: Optional[bool] = True,
        confirmation_address: Optional[str] = None,
        payment_method: Optional[PaymentMethod] = None
    ) -> None:
        """Set what the customer is paying for."""
        self.transaction = TransactionDetails(
            amount=amount,
            item_name=item_name,
            item_description=item_description,
            m_payment_id=m_payment_id,
            email_confirmation=email_confirmation,
            confirmation_address=confirmation_address,
            payment_method=payment_method
        )

    def validate(self) -> None:
        """
        Validate the request before signing.

        Raises:
            PaymentValidationError: If required details are missing
        """
        errors = {}

        if self.transaction is None:
            errors['transaction'] = 'Transaction details are required.'
        elif not self.transaction.item_name:
            errors['item_name'] = 'Item name is required.'

        if self.mode.is_recurring:
            if not self.credentials.passphrase:
                errors['passphrase'] = 'A passphrase is required for recurring billing.'
            if self.subscription is None:
                errors['subscription'] = 'Subscription details are required.'

        if errors:
            raise PaymentValidationError("Invalid payment request.", errors)

        if self.subscription is not None and self.mode.is_recurring:
            self.subscription.validate()

    def _unsigned_fields(self) -> Dict[str, Any]:
        creds = self.credentials
        customer = self.customer
        txn = self.transaction

        data: Dict[str, Any] = {
            # Merchant details
            'merchant_id': creds.merchant_id,
            'merchant_key': creds.merchant_key,
            'return_url': self.return_url,
            'cancel_url': self.cancel_url,
            'notify_url': self.notify_url,
            'fica_idnumber': self.fica_idnumber,

            # Buyer details
            'name_first': customer.name_first,
            'name_last': customer.name_last,
            'email_address': customer.email_address,
            'cell_number': customer.cell_number,

            # Transaction details
            'm_payment_id': txn.m_payment_id,
            'amount': format_amount(txn.amount),
            'item_name': txn.item_name,
            'item_description': txn.item_description,
            'email_confirmation': _flag(txn.email_confirmation),
            'confirmation_address': txn.confirmation_address,
            'payment_method': txn.payment_method.value if txn.payment_method else None,
        }

        if self.mode.is_recurring:
            sub = self.subscription
            data.update({
                'subscription_type': self.mode.subscription_type,
                'billing_date': sub.billing_date.isoformat() if sub.billing_date else None,
                'recurring_amount': (
                    format_amount(sub.recurring_amount)
                    if sub.recurring_amount is not None else None
                ),
                'frequency': int(sub.frequency),
                'cycles': sub.cycles,
                'subscription_notify_email': _flag(sub.notify_email),
                'subscription_notify_webhook': _flag(sub.notify_webhook),
                'subscription_notify_buyer': _flag(sub.notify_buyer),
            })

        return {k: v for k, v in data.items() if include_non_empty(k, v)}

    def to_fields(self) -> Dict[str, Any]:
        """
        Signed field set, in Payfast's field order.

        Returns:
            Fields with empty values removed and the signature last

        Raises:
            PaymentValidationError: If the request is incomplete
        """
        self.validate()
        return sign_fields(self._unsigned_fields(), self.credentials.passphrase)

    def payment_url(self) -> str:
        """URL to redirect the customer to for payment."""
        query = urlencode(self.to_fields())
        return f"https://{self.credentials.base_url}/eng/process?{query}"

    def process_url(self) -> str:
        """Form action for an HTML form post of to_fields()."""
        return f"https://{self.credentials.base_url}/eng/process"


def update_card_url(token: str, return_url: Optional[str] = None) -> str:
    """
    Link for a customer to update the card on a tokenization/subscription.

    Args:
        token: Token received in the subscription's ITN
        return_url: Optional URL to send the customer back to

    Returns:
        Card update URL
    """
    url = f"https://{LIVE_HOST}/eng/recurring/update/{quote(token, safe='')}"
    if return_url:
        return f"{url}?{urlencode({'return': return_url})}"
    return url


@dataclass
class SplitPayment:
    """
    Instruction to split part of a payment with a third-party merchant.

    If both percentage and amount are set, the percentage is deducted first
    and the amount from the rest. Amounts are in rands and sent in cents.
    """

    third_party_merchant_id: str
    amount: Optional[float] = None
    percentage: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            PaymentValidationError: If neither amount nor percentage is set
        """
        if not self.third_party_merchant_id:
            raise PaymentValidationError(
                "Invalid parameters.",
                {'merchant_id': 'The receiving merchant ID is required.'}
            )

        if self.percentage is None and self.amount is None:
            raise PaymentValidationError(
                "Invalid parameters.",
                {
                    'percentage': 'Cannot be null if amount is also null.',
                    'amount': 'Cannot be null if percentage is also null.'
                }
            )

    @staticmethod
    def to_cents(rands: Optional[float]) -> Optional[int]:
        if rands is None:
            return None
        return int(round(rands * 100))

    def to_dict(self) -> Dict[str, Any]:
        """Split-payment payload with absent values dropped."""
        split = {
            'merchant_id': self.third_party_merchant_id,
            'percentage': self.percentage,
            'amount': self.to_cents(self.amount),
            'min': self.to_cents(self.min),
            'max': self.to_cents(self.max),
        }
        return {'split_payment': {k: v for k, v in split.items() if v is not None}}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), separators=(',', ':'))
