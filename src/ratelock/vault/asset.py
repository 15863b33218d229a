# src/ratelock/vault/asset.py
from __future__ import annotations

"""Base-asset value interface consumed by ReserveVault.

The vault never holds base-asset balances itself; it asks an asset backend to
pull value in on deposit and push value out on withdrawal. `send` reports
failure through its return value (a refused payout is an expected outcome);
`receive` raises, because a deposit the asset cannot cover is caller error.
"""

from typing import Callable, Dict, Optional, Protocol, runtime_checkable

from ratelock.ledger.accrual import require_uint
from ratelock.ledger.errors import InsufficientBalance


@runtime_checkable
class BaseAsset(Protocol):
    def receive(self, sender: str, amount: int) -> None: ...
    def send(self, recipient: str, amount: int) -> bool: ...
    def balance_of(self, holder: str) -> int: ...


class InMemoryBaseAsset:
    """
    Minimal in-process base asset used by tests and local wiring.

    - `custodian` is the vault's holder id; receive() credits it, send() debits it
    - fail_sends_to: recipients whose payouts are refused (send returns False)
    - on_send: optional hook run before a payout settles (re-entrancy tests)
    """

    def __init__(self, *, custodian: str) -> None:
        self.custodian = str(custodian)
        self._balances: Dict[str, int] = {}
        self.fail_sends_to: set[str] = set()
        self.on_send: Optional[Callable[[str, int], None]] = None

    def fund(self, holder: str, amount: int) -> None:
        amt = require_uint(amount, "amount")
        self._balances[holder] = self._balances.get(holder, 0) + amt

    def balance_of(self, holder: str) -> int:
        return int(self._balances.get(holder, 0))

    def receive(self, sender: str, amount: int) -> None:
        amt = require_uint(amount, "amount")
        have = self.balance_of(sender)
        if have < amt:
            raise InsufficientBalance("base_asset_short", {"holder": sender, "balance": have, "amount": amt})
        self._balances[sender] = have - amt
        self._balances[self.custodian] = self.balance_of(self.custodian) + amt

    def send(self, recipient: str, amount: int) -> bool:
        amt = require_uint(amount, "amount")
        if recipient in self.fail_sends_to:
            return False
        if self.on_send is not None:
            self.on_send(recipient, amt)
        have = self.balance_of(self.custodian)
        if have < amt:
            return False
        self._balances[self.custodian] = have - amt
        self._balances[recipient] = self.balance_of(recipient) + amt
        return True


__all__ = ["BaseAsset", "InMemoryBaseAsset"]
