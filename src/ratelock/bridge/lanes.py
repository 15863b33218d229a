from __future__ import annotations

"""Bridge lane allow-list and per-lane rate limits.

A lane is the adapter's view of one remote domain:

  - remote_domain_id : the domain messages go to / come from
  - remote_adapter   : the only source identity accepted for inbound messages
  - remote_token     : token identity returned in LockOrBurnResult.dest_token
  - outbound / inbound rate limits (token buckets, amounts in ledger units)

Lane files are YAML or JSON with a top-level `lanes` list. Schemas are strict:
unknown keys are rejected so a typo cannot silently disable a rate limit.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ratelock.ledger.errors import TransferRejected


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class RateLimitConfig(_StrictModel):
    enabled: bool = False
    capacity: int = Field(default=0, ge=0)
    rate_per_sec: int = Field(default=0, ge=0)


class RemoteDomainConfig(_StrictModel):
    remote_domain_id: str = Field(..., min_length=1)
    remote_adapter: str = Field(..., min_length=1)
    remote_token: str = Field(..., min_length=1)
    outbound_rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    inbound_rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


class LaneFile(_StrictModel):
    lanes: List[RemoteDomainConfig] = Field(default_factory=list)


@dataclass
class TokenBucket:
    """Capacity/refill bucket. Disabled buckets admit everything."""

    config: RateLimitConfig
    clock: Callable[[], int]
    tokens: int = 0
    last_refill: Optional[int] = None

    def __post_init__(self) -> None:
        self.tokens = int(self.config.capacity)

    def _refill(self) -> None:
        now = int(self.clock())
        if self.last_refill is not None and now > self.last_refill:
            gained = (now - self.last_refill) * int(self.config.rate_per_sec)
            self.tokens = min(int(self.config.capacity), self.tokens + gained)
        self.last_refill = now

    def available(self) -> int:
        self._refill()
        return self.tokens

    def check(self, amount: int, *, direction: str, domain: str) -> None:
        if not self.config.enabled:
            return
        have = self.available()
        if int(amount) > have:
            raise TransferRejected(
                "rate_limited",
                {"direction": direction, "domain": domain, "requested": int(amount), "available": have},
            )

    def consume(self, amount: int) -> None:
        if not self.config.enabled:
            return
        self._refill()
        self.tokens = max(0, self.tokens - int(amount))


@dataclass
class Lane:
    config: RemoteDomainConfig
    outbound: TokenBucket
    inbound: TokenBucket


@dataclass
class LaneRegistry:
    clock: Callable[[], int]
    _lanes: Dict[str, Lane] = field(default_factory=dict, init=False)

    def set_lane(self, cfg: RemoteDomainConfig) -> Lane:
        lane = Lane(
            config=cfg,
            outbound=TokenBucket(config=cfg.outbound_rate_limit, clock=self.clock),
            inbound=TokenBucket(config=cfg.inbound_rate_limit, clock=self.clock),
        )
        self._lanes[cfg.remote_domain_id] = lane
        return lane

    def set_lanes(self, cfgs: Iterable[RemoteDomainConfig]) -> None:
        for c in cfgs:
            self.set_lane(c)

    def remove_lane(self, remote_domain_id: str) -> None:
        self._lanes.pop(str(remote_domain_id), None)

    def get(self, remote_domain_id: str) -> Optional[Lane]:
        return self._lanes.get(str(remote_domain_id))

    def require(self, remote_domain_id: str, *, direction: str) -> Lane:
        lane = self.get(remote_domain_id)
        if lane is None:
            raise TransferRejected("domain_not_allowed", {"domain": str(remote_domain_id), "direction": direction})
        return lane

    def domains(self) -> List[str]:
        return sorted(self._lanes.keys())


def parse_lanes(raw: Any) -> List[RemoteDomainConfig]:
    """Validate a decoded lane document (dict with `lanes`, or a bare list)."""
    if isinstance(raw, list):
        raw = {"lanes": raw}
    if not isinstance(raw, dict):
        raise ValueError("lane config must be an object with a 'lanes' list")
    try:
        return list(LaneFile.model_validate(raw).lanes)
    except ValidationError as e:
        raise ValueError(f"invalid lane config: {e}") from e


def load_lanes(path: str) -> List[RemoteDomainConfig]:
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    return parse_lanes(raw)


__all__ = [
    "Lane",
    "LaneRegistry",
    "RateLimitConfig",
    "RemoteDomainConfig",
    "TokenBucket",
    "load_lanes",
    "parse_lanes",
]
