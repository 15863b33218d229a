# src/ratelock/ledger/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

Json = Dict[str, Any]


@dataclass
class LedgerError(Exception):
    """Canonical error type for ledger, vault and bridge failures.

    Subclasses pin `code`; callers branch on the class (or on `code` when the
    error crossed a serialization boundary) and read `reason` for detail.
    """

    code: str
    reason: str
    details: Optional[Json] = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class Unauthorized(LedgerError):
    """Capability check failed. Never retried."""

    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("forbidden", reason, details)


class InsufficientBalance(LedgerError):
    """Requested amount exceeds the live (accrued) balance."""

    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("insufficient_balance", reason, details)


class RateCanOnlyDecrease(LedgerError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("rate_can_only_decrease", reason, details)


class ReleaseFailed(LedgerError):
    """Base-asset payout failed; the matching burn has been rolled back."""

    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("release_failed", reason, details)


class ArithmeticOverflow(LedgerError):
    """Accrual math left the supported uint256 range."""

    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("arithmetic_overflow", reason, details)


class InvalidAmount(LedgerError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("invalid_amount", reason, details)


class TransferRejected(LedgerError):
    """Bridge lane validation failed (allow-list, rate limit, admission, replay)."""

    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("rejected", reason, details)


class InvalidTransition(LedgerError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("invalid_transition", reason, details)


__all__ = [
    "ArithmeticOverflow",
    "InsufficientBalance",
    "InvalidAmount",
    "InvalidTransition",
    "LedgerError",
    "RateCanOnlyDecrease",
    "ReleaseFailed",
    "TransferRejected",
    "Unauthorized",
]
