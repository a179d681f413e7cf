"""
ITN Validation Pipeline.

Runs the four Payfast checks against a received notification:

1. Signature: recompute the MD5 signature with the merchant passphrase
2. Origin: the Referer must resolve to a Payfast address
3. Amount: amount_gross must match the amount the merchant expected
4. Confirmation: Payfast's validate endpoint must answer VALID

Stages run in order and stop at the first failure.
"""

import logging
from typing import List, Optional

from ..exceptions import GatewayUnavailableError
from ..models.credentials import MerchantCredentials
from ..models.notification import AMOUNT_FIELD, Notification
from ..models.validation import (
    FailureCategory,
    FailureReason,
    StageOutcome,
    ValidationResult,
    ValidationStage,
)
from .confirmation import ConfirmationClient, PayfastConfirmationClient
from .origin import DnsOriginTrustPolicy, OriginTrustPolicy, origin_host
from .signer import Signer, include_all_but_signature

logger = logging.getLogger(__name__)

DEFAULT_AMOUNT_TOLERANCE = 0.01


class ITNValidator:
    """
    Validates Payfast ITNs for one merchant account.

    Holds no per-notification state, so one validator can serve
    concurrent requests.

    Usage:
        validator = ITNValidator(credentials)
        result = await validator.validate(notification, expected_amount=100.00)
        if result and notification.is_complete:
            ...
    """

    def __init__(
        self,
        credentials: MerchantCredentials,
        origin_policy: Optional[OriginTrustPolicy] = None,
        confirmation_client: Optional[ConfirmationClient] = None,
        amount_tolerance: float = DEFAULT_AMOUNT_TOLERANCE
    ):
        """
        Initialize the validator.

        Args:
            credentials: Merchant credentials (passphrase used for signatures)
            origin_policy: Origin trust policy (live DNS by default)
            confirmation_client: Gateway confirmation client
            amount_tolerance: Absolute tolerance for the amount check
        """
        self.credentials = credentials
        self.signer = Signer(credentials.passphrase)
        self.amount_tolerance = amount_tolerance

        # Collaborators built here are closed by close()
        self._own_origin_policy: Optional[DnsOriginTrustPolicy] = None
        self._own_confirmation_client: Optional[PayfastConfirmationClient] = None

        if origin_policy is None:
            origin_policy = self._own_origin_policy = DnsOriginTrustPolicy()
        if confirmation_client is None:
            confirmation_client = self._own_confirmation_client = PayfastConfirmationClient(
                credentials.base_url
            )

        self.origin_policy = origin_policy
        self.confirmation_client = confirmation_client

    async def close(self) -> None:
        """Release the DNS resolver and HTTP session of default collaborators."""
        if self._own_confirmation_client is not None:
            await self._own_confirmation_client.stop()
        if self._own_origin_policy is not None:
            await self._own_origin_policy.close()

    def param_string(self, notification: Notification) -> str:
        """Unkeyed canonical string of a notification, as posted for confirmation."""
        return self.signer.canonical(
            notification.data,
            include_all_but_signature,
            keyed=False
        )

    # Stage 1

    def evaluate_signature(self, notification: Notification) -> StageOutcome:
        if self.signer.verify(notification.data, notification.signature):
            return StageOutcome(ValidationStage.SIGNATURE, True)

        return StageOutcome(
            ValidationStage.SIGNATURE,
            False,
            FailureReason.SIGNATURE_MISMATCH,
            "Signature does not match notification data"
        )

    def check_signature(self, notification: Notification) -> bool:
        """Verify the security signature in the notification."""
        return self.evaluate_signature(notification).passed

    # Stage 2

    async def evaluate_origin(self, notification: Notification) -> StageOutcome:
        stage = ValidationStage.ORIGIN

        host = origin_host(notification.origin)
        if host is None:
            return StageOutcome(
                stage, False, FailureReason.MISSING_ORIGIN,
                "Notification has no Referer"
            )

        try:
            valid_ips = await self.origin_policy.trusted_addresses()
            if not valid_ips:
                return StageOutcome(
                    stage, False, FailureReason.UNTRUSTED_ORIGIN,
                    "No trusted Payfast addresses"
                )

            origin_ip = await self.origin_policy.resolve_origin(host)
        except GatewayUnavailableError as e:
            reason = (
                FailureReason.ORIGIN_TIMEOUT if e.timed_out
                else FailureReason.ORIGIN_UNAVAILABLE
            )
            return StageOutcome(stage, False, reason, str(e))

        if origin_ip is None or origin_ip not in valid_ips:
            return StageOutcome(
                stage, False, FailureReason.UNTRUSTED_ORIGIN,
                f"Origin {host} ({origin_ip or 'unresolved'}) is not a Payfast address"
            )

        return StageOutcome(stage, True)

    async def check_origin(self, notification: Notification) -> bool:
        """Check that the notification came from a valid Payfast domain."""
        return (await self.evaluate_origin(notification)).passed

    # Stage 3

    def evaluate_amount(
        self,
        notification: Notification,
        expected_amount: float
    ) -> StageOutcome:
        stage = ValidationStage.AMOUNT

        if notification.get(AMOUNT_FIELD) is None:
            return StageOutcome(
                stage, False, FailureReason.MISSING_AMOUNT,
                f"{AMOUNT_FIELD} is missing"
            )

        received = notification.amount_gross
        if received is None:
            return StageOutcome(
                stage, False, FailureReason.AMOUNT_MISMATCH,
                f"{AMOUNT_FIELD} is not a number"
            )

        if abs(float(expected_amount) - received) >= self.amount_tolerance:
            return StageOutcome(
                stage, False, FailureReason.AMOUNT_MISMATCH,
                f"Expected {float(expected_amount):.2f}, received {received}"
            )

        return StageOutcome(stage, True)

    def check_amount(self, notification: Notification, expected_amount: float) -> bool:
        """The expected amount must match amount_gross within tolerance."""
        return self.evaluate_amount(notification, expected_amount).passed

    # Stage 4

    async def evaluate_confirmation(self, notification: Notification) -> StageOutcome:
        stage = ValidationStage.CONFIRMATION

        try:
            confirmed = await self.confirmation_client.confirm(
                self.param_string(notification)
            )
        except GatewayUnavailableError as e:
            reason = (
                FailureReason.CONFIRMATION_TIMEOUT if e.timed_out
                else FailureReason.CONFIRMATION_UNAVAILABLE
            )
            return StageOutcome(stage, False, reason, str(e))

        if not confirmed:
            return StageOutcome(
                stage, False, FailureReason.CONFIRMATION_REJECTED,
                "Payfast did not confirm the notification"
            )

        return StageOutcome(stage, True)

    async def confirm_with_gateway(self, notification: Notification) -> bool:
        """Confirm the notification with Payfast's validate endpoint."""
        return (await self.evaluate_confirmation(notification)).passed

    # Pipeline

    async def validate(
        self,
        notification: Notification,
        expected_amount: float
    ) -> ValidationResult:
        """
        Run all validation stages.

        Args:
            notification: Received notification
            expected_amount: Amount the customer was expected to pay

        Returns:
            ValidationResult (truthy only if every stage passed)
        """
        passed: List[ValidationStage] = []

        outcome = self.evaluate_signature(notification)
        if outcome:
            passed.append(outcome.stage)
            outcome = await self.evaluate_origin(notification)
        if outcome:
            passed.append(outcome.stage)
            outcome = self.evaluate_amount(notification, expected_amount)
        if outcome:
            passed.append(outcome.stage)
            outcome = await self.evaluate_confirmation(notification)

        if not outcome:
            result = ValidationResult.failure(outcome, passed)
            self._log_failure(notification, result)
            return result

        passed.append(outcome.stage)
        logger.info(f"ITN {notification.short_id()} validated")
        return ValidationResult.success(passed)

    async def is_valid(self, notification: Notification, expected_amount: float) -> bool:
        """Boolean form of validate()."""
        return bool(await self.validate(notification, expected_amount))

    def _log_failure(self, notification: Notification, result: ValidationResult) -> None:
        message = (
            f"ITN {notification.short_id()} failed {result.stage.value} check: "
            f"{result.reason.value} ({result.detail})"
        )

        if result.category == FailureCategory.AUTHENTICITY:
            logger.warning(f"Possible forged notification. {message}")
        elif result.category == FailureCategory.INFRASTRUCTURE:
            logger.error(f"Could not verify notification. {message}")
        else:
            logger.warning(message)
