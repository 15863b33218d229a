# src/ratelock/__init__.py
"""
ratelock: interest-bearing token ledger with rate-preserving bridge

Packages:
  - ledger: accrual math, RateLedger, SQLite snapshot store
  - vault: base-asset reserve (deposit / withdraw)
  - bridge: wire codec, lanes, transport, BridgeAdapter
  - testing: deterministic helpers for tests

Top-level modules:
  - config / env: operator configuration
  - structured_logging: JSONL log events
  - domain: build_domain() composition root, boot_domain() startup path
  - __main__: `ratelock` console entry point
"""

from __future__ import annotations

__all__ = [
    "bridge",
    "config",
    "domain",
    "env",
    "ledger",
    "structured_logging",
    "testing",
    "vault",
]
