# src/ratelock/vault/vault.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from ratelock.ledger.accrual import require_uint
from ratelock.ledger.constants import ALL, DEFAULT_VAULT_ID
from ratelock.ledger.errors import InvalidAmount, ReleaseFailed
from ratelock.ledger.ledger import RateLedger
from ratelock.structured_logging import log_event
from ratelock.vault.asset import BaseAsset

Json = Dict[str, Any]

_log = logging.getLogger("ratelock.vault")


class ReserveVault:
    """Escrows base asset 1:1 against ledger tokens.

    The vault's own id must hold the ledger's mint capability. Both operations
    run inside `ledger.atomic()`, so a failing asset leg undoes the ledger leg.
    Withdrawal burns before paying out: a payout hook that re-enters the vault
    sees the post-burn balance.
    """

    def __init__(self, ledger: RateLedger, asset: BaseAsset, *, vault_id: str = DEFAULT_VAULT_ID) -> None:
        self.ledger = ledger
        self.asset = asset
        self.vault_id = str(vault_id)
        self.receipts: List[Json] = []

    def reserve_address_of_ledger(self) -> str:
        return self.ledger.ledger_id

    def reserve_balance(self) -> int:
        return int(self.asset.balance_of(self.vault_id))

    def deposit(self, caller: str, value: int) -> Json:
        amt = require_uint(value, "value")
        if amt == 0 or amt == ALL:
            raise InvalidAmount("deposit_must_be_positive", {"value": amt})

        with self.ledger.atomic():
            self.ledger.issue(caller, amt, caller=self.vault_id)
            self.asset.receive(caller, amt)

        log_event(_log, "vault.deposit", vault_id=self.vault_id, account=caller, amount=amt)
        receipt: Json = {"applied": "DEPOSIT", "account": caller, "amount": amt}
        self.receipts.append(receipt)
        return dict(receipt)

    def withdraw(self, caller: str, amount: int) -> Json:
        amt = require_uint(amount, "amount")

        with self.ledger.atomic():
            if amt == ALL:
                amt = self.ledger.balance_of(caller)
            burned = self.ledger.redeem(caller, amt, caller=self.vault_id)
            try:
                ok = self.asset.send(caller, burned)
            except Exception as e:
                raise ReleaseFailed("asset_send_raised", {"account": caller, "amount": burned, "error": str(e)}) from e
            if not ok:
                raise ReleaseFailed("asset_send_refused", {"account": caller, "amount": burned})

        log_event(_log, "vault.withdrawal", vault_id=self.vault_id, account=caller, amount=burned)
        receipt = {"applied": "WITHDRAWAL", "account": caller, "amount": burned}
        self.receipts.append(receipt)
        return dict(receipt)


__all__ = ["ReserveVault"]
