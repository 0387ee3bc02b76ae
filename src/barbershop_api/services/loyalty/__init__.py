"""Loyalty crediting services."""

from .crediting import (  # noqa: F401
    CreditCallback,
    CreditOutcome,
    CreditStatus,
    LoyaltyCreditingService,
    ScanResult,
    SweepSummary,
    UnknownLoyaltyTokenError,
)
from .notifications import PushCreditNotifier, build_credit_message  # noqa: F401

__all__ = [
    "CreditCallback",
    "CreditOutcome",
    "CreditStatus",
    "LoyaltyCreditingService",
    "PushCreditNotifier",
    "ScanResult",
    "SweepSummary",
    "UnknownLoyaltyTokenError",
    "build_credit_message",
]
