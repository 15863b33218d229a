# src/ratelock/domain.py
from __future__ import annotations

"""One-domain wiring: ledger + reserve vault + bridge adapter.

build_domain() is the composition root:
  - restores the ledger snapshot from SQLite when cfg.db_path has one
  - grants mint capability to the vault and the adapter (owner action)
  - loads lanes from cfg.lanes_path when set

boot_domain() is the process startup path: .env, then config file, then
logging, then build_domain().

Cross-domain wiring (registering handle_message with a transport) is the
caller's job; see Domain.attach().
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ratelock.bridge.adapter import BridgeAdapter
from ratelock.bridge.lanes import LaneRegistry, load_lanes
from ratelock.bridge.transport import InMemoryTransport, Transport
from ratelock.config import (
    DomainConfig,
    apply_domain_config_to_env,
    load_domain_config,
    validate_domain_config,
)
from ratelock.env import load_dotenv_if_present
from ratelock.ledger.ledger import Clock, RateLedger
from ratelock.ledger.store import SqliteDB, SqliteLedgerStore
from ratelock.structured_logging import configure_structured_logging, log_event
from ratelock.vault.asset import BaseAsset, InMemoryBaseAsset
from ratelock.vault.vault import ReserveVault

_log = logging.getLogger("ratelock.ledger")


@dataclass
class Domain:
    config: DomainConfig
    ledger: RateLedger
    vault: ReserveVault
    adapter: BridgeAdapter
    store: Optional[SqliteLedgerStore] = None

    @property
    def domain_id(self) -> str:
        return self.config.domain_id

    def attach(self, transport: InMemoryTransport) -> None:
        """Route messages addressed to this domain into its adapter."""
        transport.register(self.domain_id, self.adapter.handle_message)

    def save(self) -> None:
        if self.store is None:
            return
        self.store.write(self.ledger.to_json())


def _open_ledger(cfg: DomainConfig, *, clock: Optional[Clock], store: Optional[SqliteLedgerStore]) -> RateLedger:
    if store is not None and store.exists(cfg.domain_id):
        log_event(_log, "domain.ledger_restored", domain=cfg.domain_id, db_path=cfg.db_path)
        return RateLedger.from_json(store.read(cfg.domain_id), clock=clock)
    return RateLedger(
        ledger_id=cfg.domain_id,
        owner=cfg.owner,
        initial_global_rate=int(cfg.initial_global_rate),
        clock=clock,
    )


def build_domain(
    cfg: DomainConfig,
    *,
    clock: Optional[Clock] = None,
    transport: Optional[Transport] = None,
    asset: Optional[BaseAsset] = None,
) -> Domain:
    validate_domain_config(cfg)

    store = SqliteLedgerStore(db=SqliteDB(path=cfg.db_path)) if cfg.db_path else None
    ledger = _open_ledger(cfg, clock=clock, store=store)

    # Idempotent on a restored ledger; the owner may have been handed over.
    if ledger.owner == cfg.owner:
        for minter in (cfg.vault_id, cfg.adapter_id):
            if not ledger.has_mint_capability(minter):
                ledger.grant_mint_capability(minter, caller=cfg.owner)

    vault = ReserveVault(
        ledger,
        asset if asset is not None else InMemoryBaseAsset(custodian=cfg.vault_id),
        vault_id=cfg.vault_id,
    )

    lanes = LaneRegistry(clock=ledger.now)
    if cfg.lanes_path:
        lanes.set_lanes(load_lanes(cfg.lanes_path))

    adapter = BridgeAdapter(
        ledger,
        transport if transport is not None else InMemoryTransport(),
        domain_id=cfg.domain_id,
        token_id=cfg.token_id,
        adapter_id=cfg.adapter_id,
        lanes=lanes,
    )

    log_event(
        _log,
        "domain.built",
        domain=cfg.domain_id,
        token=cfg.token_id,
        lanes=lanes.domains(),
        global_rate=ledger.global_rate,
    )
    return Domain(config=cfg, ledger=ledger, vault=vault, adapter=adapter, store=store)


def boot_domain(
    *,
    config_path: Optional[str] = None,
    dotenv_path: Optional[str] = None,
    clock: Optional[Clock] = None,
    transport: Optional[Transport] = None,
    asset: Optional[BaseAsset] = None,
) -> Domain:
    # Load .env first so RATELOCK_* vars exist before config is read.
    load_dotenv_if_present(dotenv_path)
    cfg = load_domain_config(config_path=config_path)
    apply_domain_config_to_env(cfg)
    configure_structured_logging()
    return build_domain(cfg, clock=clock, transport=transport, asset=asset)


__all__ = ["Domain", "boot_domain", "build_domain"]
