"""
Validation outcome models.

The pipeline reports a single boolean to callers, but keeps track of which
stage failed and why so operators can tell a forged notification apart
from an unreachable gateway.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ValidationStage(str, Enum):
    """Stages of the ITN validation pipeline, in execution order."""
    SIGNATURE = "signature"
    ORIGIN = "origin"
    AMOUNT = "amount"
    CONFIRMATION = "confirmation"


class FailureCategory(str, Enum):
    """Broad classes of validation failure."""
    PROTOCOL = "protocol"
    AUTHENTICITY = "authenticity"
    INTEGRITY = "integrity"
    INFRASTRUCTURE = "infrastructure"


class FailureReason(str, Enum):
    """Why a notification was not accepted."""

    # Protocol violations
    METHOD_NOT_ALLOWED = "method_not_allowed"
    MISSING_SIGNATURE = "missing_signature"
    MALFORMED_BODY = "malformed_body"

    # Authenticity failures
    SIGNATURE_MISMATCH = "signature_mismatch"
    MISSING_ORIGIN = "missing_origin"
    UNTRUSTED_ORIGIN = "untrusted_origin"
    CONFIRMATION_REJECTED = "confirmation_rejected"

    # Business data mismatch
    MISSING_AMOUNT = "missing_amount"
    AMOUNT_MISMATCH = "amount_mismatch"

    # Infrastructure failures
    ORIGIN_UNAVAILABLE = "origin_unavailable"
    ORIGIN_TIMEOUT = "origin_timeout"
    CONFIRMATION_UNAVAILABLE = "confirmation_unavailable"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"

    @property
    def category(self) -> FailureCategory:
        return _CATEGORIES[self]


_CATEGORIES = {
    FailureReason.METHOD_NOT_ALLOWED: FailureCategory.PROTOCOL,
    FailureReason.MISSING_SIGNATURE: FailureCategory.PROTOCOL,
    FailureReason.MALFORMED_BODY: FailureCategory.PROTOCOL,
    FailureReason.SIGNATURE_MISMATCH: FailureCategory.AUTHENTICITY,
    FailureReason.MISSING_ORIGIN: FailureCategory.AUTHENTICITY,
    FailureReason.UNTRUSTED_ORIGIN: FailureCategory.AUTHENTICITY,
    FailureReason.CONFIRMATION_REJECTED: FailureCategory.AUTHENTICITY,
    FailureReason.MISSING_AMOUNT: FailureCategory.INTEGRITY,
    FailureReason.AMOUNT_MISMATCH: FailureCategory.INTEGRITY,
    FailureReason.ORIGIN_UNAVAILABLE: FailureCategory.INFRASTRUCTURE,
    FailureReason.ORIGIN_TIMEOUT: FailureCategory.INFRASTRUCTURE,
    FailureReason.CONFIRMATION_UNAVAILABLE: FailureCategory.INFRASTRUCTURE,
    FailureReason.CONFIRMATION_TIMEOUT: FailureCategory.INFRASTRUCTURE,
}


@dataclass
class StageOutcome:
    """Result of a single validation stage."""

    stage: ValidationStage
    passed: bool
    reason: Optional[FailureReason] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.passed


@dataclass
class ValidationResult:
    """
    Overall result of validating one notification.

    Truthiness equals `valid`, so the result can be used wherever a plain
    boolean is expected.

    Attributes:
        valid: Whether every stage passed
        stage: First stage that failed, if any
        reason: Reason the failing stage gave
        detail: Human-readable explanation for logs
        stages_passed: Stages that passed before the failure
    """

    valid: bool
    stage: Optional[ValidationStage] = None
    reason: Optional[FailureReason] = None
    detail: str = ""
    stages_passed: List[ValidationStage] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid

    @classmethod
    def success(cls, stages_passed: List[ValidationStage]) -> 'ValidationResult':
        return cls(valid=True, stages_passed=list(stages_passed))

    @classmethod
    def failure(
        cls,
        outcome: StageOutcome,
        stages_passed: List[ValidationStage]
    ) -> 'ValidationResult':
        return cls(
            valid=False,
            stage=outcome.stage,
            reason=outcome.reason,
            detail=outcome.detail,
            stages_passed=list(stages_passed)
        )

    @property
    def category(self) -> Optional[FailureCategory]:
        return self.reason.category if self.reason else None

    def is_authenticity_failure(self) -> bool:
        """Potential attack: log and never silently ignore."""
        return self.category == FailureCategory.AUTHENTICITY

    def is_infrastructure_failure(self) -> bool:
        """Could not verify: retry or alert rather than reject as forged."""
        return self.category == FailureCategory.INFRASTRUCTURE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/JSON."""
        return {
            'valid': self.valid,
            'stage': self.stage.value if self.stage else None,
            'reason': self.reason.value if self.reason else None,
            'category': self.category.value if self.category else None,
            'detail': self.detail,
            'stages_passed': [s.value for s in self.stages_passed]
        }
