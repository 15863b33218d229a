# src/ratelock/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from ratelock.ledger.constants import (
    DEFAULT_ADAPTER_ID,
    DEFAULT_GLOBAL_RATE,
    DEFAULT_OWNER_ID,
    DEFAULT_VAULT_ID,
    MAX_UINT256,
)


def _as_int(v: Any, default: int) -> int:
    if v is None or isinstance(v, bool):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


@dataclass(frozen=True)
class DomainConfig:
    domain_id: str
    token_id: str
    owner: str

    initial_global_rate: int

    adapter_id: str
    vault_id: str

    # SQLite file for ledger snapshots; "" disables persistence.
    db_path: str
    # YAML/JSON lane allow-list; "" means no remote domains yet.
    lanes_path: str

    log_level: str


_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_domain_config(cfg: DomainConfig) -> None:
    """Fail-fast validation for operator config."""

    for name in ("domain_id", "token_id", "owner", "adapter_id", "vault_id"):
        v = getattr(cfg, name)
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    ids = [cfg.owner, cfg.adapter_id, cfg.vault_id]
    if len(set(ids)) != len(ids):
        raise ValueError(f"owner, adapter_id and vault_id must be distinct; got: {ids}")

    if int(cfg.initial_global_rate) < 0 or int(cfg.initial_global_rate) > MAX_UINT256:
        raise ValueError(f"initial_global_rate must be a uint256; got: {cfg.initial_global_rate}")

    if str(cfg.log_level).strip().upper() not in _ALLOWED_LOG_LEVELS:
        raise ValueError(f"log_level must be one of {sorted(_ALLOWED_LOG_LEVELS)}; got: {cfg.log_level!r}")

    if cfg.lanes_path and not Path(cfg.lanes_path).is_file():
        raise ValueError(f"lanes_path does not exist or is not a file: {cfg.lanes_path!r}")


def default_domain_config() -> DomainConfig:
    return DomainConfig(
        domain_id="local",
        token_id="ratelock-local",
        owner=DEFAULT_OWNER_ID,
        initial_global_rate=DEFAULT_GLOBAL_RATE,
        adapter_id=DEFAULT_ADAPTER_ID,
        vault_id=DEFAULT_VAULT_ID,
        db_path="",
        lanes_path="",
        log_level="INFO",
    )


def _read_raw(p: Path) -> Any:
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text)
    return json.loads(text)


def read_domain_config_file(path: str) -> DomainConfig:
    p = Path(path)
    raw = _read_raw(p)
    if not isinstance(raw, dict):
        raise ValueError("domain config must be a JSON/YAML object")

    d = default_domain_config()

    lanes_path = _as_str(raw.get("lanes_path"), d.lanes_path)
    if lanes_path and not Path(lanes_path).is_absolute():
        # Relative lane files resolve next to the config file.
        lanes_path = str(p.parent / lanes_path)

    cfg = DomainConfig(
        domain_id=_as_str(raw.get("domain_id"), d.domain_id),
        token_id=_as_str(raw.get("token_id"), d.token_id),
        owner=_as_str(raw.get("owner"), d.owner),
        initial_global_rate=_as_int(raw.get("initial_global_rate"), d.initial_global_rate),
        adapter_id=_as_str(raw.get("adapter_id"), d.adapter_id),
        vault_id=_as_str(raw.get("vault_id"), d.vault_id),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        lanes_path=lanes_path,
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
    )

    validate_domain_config(cfg)
    return cfg


def load_domain_config(*, config_path: Optional[str] = None) -> DomainConfig:
    p = config_path or os.environ.get("RATELOCK_CONFIG_PATH")
    if p:
        return read_domain_config_file(p)

    cfg = default_domain_config()
    validate_domain_config(cfg)
    return cfg


def apply_domain_config_to_env(cfg: DomainConfig) -> None:
    validate_domain_config(cfg)
    os.environ["RATELOCK_DOMAIN_ID"] = cfg.domain_id
    os.environ["RATELOCK_TOKEN_ID"] = cfg.token_id
    os.environ["RATELOCK_DB_PATH"] = cfg.db_path
    os.environ["RATELOCK_LOG_LEVEL"] = cfg.log_level.upper()
