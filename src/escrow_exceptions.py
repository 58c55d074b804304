"""
CryptoEscrow - Exception Hierarchy

Every failure raised by the escrow core derives from EscrowError and carries a
structured ErrorContext so it can be logged, serialized and mapped to an HTTP
status without string matching.

Categories:
- authorization: caller lacks the role required for the record/operation
- state: operation invalid for the record's current status
- validation: bad input (addresses, amounts, tokens)
- configuration: fee/threshold out of bounds at admin-change time
- resource: no eligible arbitrator, unknown arbitrator
- transfer: the external asset transfer reported failure
- concurrency: re-entrant call into a guarded operation
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorSeverity(Enum):
    """Severity levels for escrow errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Structured context for error tracking and debugging."""
    component: str
    action: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "severity": self.severity.value
        }


class EscrowError(Exception):
    """
    Base exception for all escrow errors.

    Subclasses set ``category`` and ``code``; ``code`` mirrors the custom
    error names surfaced to callers (e.g. "UnauthorizedAccess").
    """

    category = "internal"
    code = "EscrowError"
    default_severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str = "",
        component: str = "escrow",
        action: str = "unknown",
        severity: ErrorSeverity | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        message = message or self.code
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=component,
            action=action,
            severity=severity or self.default_severity,
            details=details or {}
        )
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error": self.code,
            "category": self.category,
            "message": self.message,
            **self.context.to_dict()
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }
        return result

    def __str__(self) -> str:
        base = f"[{self.context.component}:{self.context.action}] {self.message}"
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# =============================================================================
# Authorization
# =============================================================================

class UnauthorizedAccess(EscrowError):
    """Caller lacks the required role for this record or operation."""
    category = "authorization"
    code = "UnauthorizedAccess"
    default_severity = ErrorSeverity.HIGH

    def __init__(self, message: str = "", caller: str | None = None, **kwargs):
        details = {"caller": caller, **kwargs.pop("details", {})}
        super().__init__(message, details=details, **kwargs)
        self.caller = caller


# =============================================================================
# State
# =============================================================================

class EscrowStateError(EscrowError):
    """Operation is invalid for the record's current status."""
    category = "state"
    code = "InvalidEscrowState"

    def __init__(
        self,
        message: str = "",
        escrow_id: int | None = None,
        status: Any = None,
        **kwargs
    ):
        details = {
            "escrow_id": escrow_id,
            "status": getattr(status, "name", status),
            **kwargs.pop("details", {})
        }
        super().__init__(message, details=details, **kwargs)
        self.escrow_id = escrow_id
        self.status = status


class EscrowNotFound(EscrowStateError):
    code = "EscrowNotFound"


class EscrowNotPending(EscrowStateError):
    code = "EscrowNotPending"


class EscrowNotFunded(EscrowStateError):
    code = "EscrowNotFunded"


class EscrowNotInDisputedState(EscrowStateError):
    code = "EscrowNotInDisputedState"


class DisputeTimeframeExpired(EscrowStateError):
    code = "DisputeTimeframeExpired"


# =============================================================================
# Validation
# =============================================================================

class ValidationError(EscrowError):
    """Invalid input to an escrow operation."""
    category = "validation"
    code = "ValidationError"
    default_severity = ErrorSeverity.LOW


class InvalidSellerAddress(ValidationError):
    code = "InvalidSellerAddress"


class InvalidAmount(ValidationError):
    code = "InvalidAmount"


class IncorrectPaymentValue(ValidationError):
    code = "IncorrectPaymentValue"


class InvalidPayoutAmounts(ValidationError):
    code = "InvalidPayoutAmounts"


class TokenNotSupported(ValidationError):
    code = "TokenNotSupported"


class InvalidTokenOperation(ValidationError):
    code = "InvalidTokenOperation"


# =============================================================================
# Configuration
# =============================================================================

class InvalidFeeConfiguration(EscrowError):
    """
    Fee out of bounds.

    Raised both when an administrator configures a rate above the hard
    maximum and when a disputing party posts less than the fixed dispute fee.
    """
    category = "configuration"
    code = "InvalidFeeConfiguration"


class InvalidConfiguration(EscrowError):
    """A non-fee threshold is out of bounds."""
    category = "configuration"
    code = "InvalidConfiguration"


# =============================================================================
# Resource
# =============================================================================

class NoEligibleArbitrators(EscrowError):
    """The roster holds no arbitrator eligible for this dispute."""
    category = "resource"
    code = "NoEligibleArbitrators"
    default_severity = ErrorSeverity.HIGH


class ArbitratorNotFound(EscrowError):
    category = "resource"
    code = "ArbitratorNotFound"
    default_severity = ErrorSeverity.LOW


# =============================================================================
# Transfer / Concurrency
# =============================================================================

class TransferFailed(EscrowError):
    """The external asset transfer reported failure; the operation is void."""
    category = "transfer"
    code = "TransferFailed"
    default_severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str = "",
        transfer: str = "unknown",
        asset: Any = None,
        counterparty: str | None = None,
        amount: int | None = None,
        **kwargs
    ):
        details = {
            "transfer": transfer,
            "asset": str(asset) if asset is not None else None,
            "counterparty": counterparty,
            "amount": amount,
            **kwargs.pop("details", {})
        }
        super().__init__(message, action=transfer, details=details, **kwargs)
        self.transfer = transfer


class ReentrancyError(EscrowError):
    """A guarded operation was re-entered before the outer call finished."""
    category = "concurrency"
    code = "ReentrancyGuardReentrantCall"
    default_severity = ErrorSeverity.CRITICAL
