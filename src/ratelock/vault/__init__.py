# src/ratelock/vault/__init__.py
from __future__ import annotations

__all__ = ["asset", "vault"]
