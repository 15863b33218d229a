# src/ratelock/ledger/__init__.py
from __future__ import annotations

from ratelock.ledger.constants import ALL, MAX_UINT256, PRECISION
from ratelock.ledger.errors import (
    ArithmeticOverflow,
    InsufficientBalance,
    InvalidAmount,
    InvalidTransition,
    LedgerError,
    RateCanOnlyDecrease,
    ReleaseFailed,
    TransferRejected,
    Unauthorized,
)
from ratelock.ledger.ledger import RateLedger

__all__ = [
    "ALL",
    "ArithmeticOverflow",
    "InsufficientBalance",
    "InvalidAmount",
    "InvalidTransition",
    "LedgerError",
    "MAX_UINT256",
    "PRECISION",
    "RateCanOnlyDecrease",
    "RateLedger",
    "ReleaseFailed",
    "TransferRejected",
    "Unauthorized",
]
