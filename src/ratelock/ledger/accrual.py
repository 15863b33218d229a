# src/ratelock/ledger/accrual.py
from __future__ import annotations

"""Linear (simple-interest) accrual math.

All arithmetic is on Python ints, bounded explicitly by MAX_UINT256 so that a
stored ledger stays representable in a 256-bit word on any other domain the
bridge talks to. Exceeding the bound raises ArithmeticOverflow.
"""

from typing import Any

from ratelock.ledger.constants import MAX_UINT256, PRECISION
from ratelock.ledger.errors import ArithmeticOverflow, InvalidAmount


def require_uint(v: Any, field: str) -> int:
    """Return `v` if it is a non-negative int within uint256, else raise InvalidAmount."""
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidAmount("not_an_int", {"field": field, "type": type(v).__name__})
    if v < 0:
        raise InvalidAmount("negative", {"field": field, "value": v})
    if v > MAX_UINT256:
        raise InvalidAmount("out_of_range", {"field": field})
    return v


def checked_add(a: int, b: int) -> int:
    out = int(a) + int(b)
    if out > MAX_UINT256:
        raise ArithmeticOverflow("add_overflow", {"a": int(a), "b": int(b)})
    return out


def checked_mul(a: int, b: int) -> int:
    out = int(a) * int(b)
    if out > MAX_UINT256:
        raise ArithmeticOverflow("mul_overflow", {"a": int(a), "b": int(b)})
    return out


def accrued_balance(principal: int, rate: int, elapsed: int, *, precision: int = PRECISION) -> int:
    """floor(principal * (precision + rate * elapsed) / precision).

    Negative `elapsed` (a clock that moved backwards) counts as zero, so the
    result is never below `principal`.
    """
    p = int(principal)
    if p == 0:
        return 0
    dt = max(int(elapsed), 0)
    growth = checked_add(precision, checked_mul(int(rate), dt))
    return checked_mul(p, growth) // int(precision)


def interest_due(principal: int, rate: int, elapsed: int, *, precision: int = PRECISION) -> int:
    """Unrealized interest for one account: live balance minus principal."""
    return accrued_balance(principal, rate, elapsed, precision=precision) - int(principal)


__all__ = [
    "accrued_balance",
    "checked_add",
    "checked_mul",
    "interest_due",
    "require_uint",
]
