# src/ratelock/bridge/__init__.py
"""
ratelock: bridge package

  - messages: wire dataclasses + outbound state machine
  - codec: deterministic JSON encoding/decoding of payloads and messages
  - lanes: remote-domain allow-list (pydantic) + token-bucket rate limits
  - transport: abstract messaging interface + in-memory backend
  - adapter: BridgeAdapter (lock_or_burn / release_or_mint)
"""

from __future__ import annotations

__all__ = [
    "adapter",
    "codec",
    "lanes",
    "messages",
    "transport",
]
