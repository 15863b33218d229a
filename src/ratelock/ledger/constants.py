# src/ratelock/ledger/constants.py
from __future__ import annotations

"""Ledger numeric constants.

- Rates are fixed-point integers scaled by PRECISION (1e18), expressed as
  interest per second per unit of principal.
- All stored integers are bounded by MAX_UINT256; anything larger is an
  arithmetic overflow, never a wraparound.
"""

PRECISION: int = 10**18

MAX_UINT256: int = 2**256 - 1

# Sentinel amount for "the whole live balance" (redeem / transfer / withdraw).
ALL: int = MAX_UINT256

# Default issuance rate for new ledgers: 5% per 365-day year, per second.
SECONDS_PER_YEAR: int = 365 * 24 * 60 * 60
DEFAULT_GLOBAL_RATE: int = (PRECISION * 5 // 100) // SECONDS_PER_YEAR

# Canonical account ids used by the wiring in ratelock.domain.
DEFAULT_OWNER_ID: str = "OWNER"
DEFAULT_VAULT_ID: str = "VAULT"
DEFAULT_ADAPTER_ID: str = "BRIDGE_ADAPTER"
