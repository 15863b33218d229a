# src/ratelock/ledger/state.py
from __future__ import annotations

"""Ledger state schema helpers.

Ledger state is a JSON-compatible dict so it can be snapshotted with
copy.deepcopy, persisted verbatim, and diffed in tests:

  {
    "ledger_id": "...",
    "params":   {"global_rate": int, "owner": str, "precision": int, "rate_version": int},
    "accounts": {account_id: {"principal": int, "personal_rate": int, "last_update": int}},
    "minters":  {account_id: True},
    "consumed": {bridge_msg_id: consumed_at},
  }

Only this module creates containers; ledger operations rely on them existing.
Notifications are not part of the state; RateLedger keeps the recent ones in
a bounded buffer.
"""

import copy
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Dict

Json = Dict[str, Any]


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def new_account() -> Json:
    return {"principal": 0, "personal_rate": 0, "last_update": 0}


def ensure_ledger_state(st: Any, *, ledger_id: str, owner: str, global_rate: int, precision: int) -> Json:
    """Ensure `st` is a dict with every core container, filling defaults.

    Raises:
        TypeError: if st or one of its containers has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    st.setdefault("ledger_id", ledger_id)

    for key, kind in (("params", dict), ("accounts", dict), ("minters", dict), ("consumed", dict)):
        cur = st.get(key)
        if cur is None:
            st[key] = kind()
        elif not isinstance(cur, kind):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be {kind.__name__}, got {type(cur)}")

    # Older snapshots carried an append-only event list.
    st.pop("events", None)

    params = st["params"]
    params.setdefault("global_rate", int(global_rate))
    params.setdefault("owner", str(owner))
    params.setdefault("precision", int(precision))
    params.setdefault("rate_version", 0)
    return st  # type: ignore[return-value]


def ensure_account(st: Json, account_id: str) -> Json:
    accts = st["accounts"]
    acct = accts.get(account_id)
    if not isinstance(acct, dict):
        acct = new_account()
        accts[account_id] = acct
    for k, v in new_account().items():
        acct.setdefault(k, v)
    return acct


def get_account(st: Json, account_id: str) -> Json:
    """Read-only lookup; missing accounts read as an empty record."""
    acct = st.get("accounts", {}).get(account_id)
    return acct if isinstance(acct, dict) else new_account()


@dataclass(frozen=True, slots=True)
class AccountView:
    """Immutable copy of one account record plus its live balance."""

    account_id: str
    principal: int
    personal_rate: int
    last_update: int
    balance: int

    @classmethod
    def from_record(cls, account_id: str, rec: Json, *, balance: int) -> "AccountView":
        return cls(
            account_id=account_id,
            principal=_as_int(rec.get("principal")),
            personal_rate=_as_int(rec.get("personal_rate")),
            last_update=_as_int(rec.get("last_update")),
            balance=int(balance),
        )


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Opaque deep copy of ledger state, used by RateLedger.atomic()."""

    state: Json = field(default_factory=dict)

    @classmethod
    def capture(cls, st: Json) -> "LedgerSnapshot":
        return cls(state=copy.deepcopy(st))

    def restore_into(self, st: Json) -> None:
        # Replace contents in-place so callers holding references see the rollback.
        st.clear()
        st.update(copy.deepcopy(self.state))


__all__ = [
    "AccountView",
    "LedgerSnapshot",
    "ensure_account",
    "ensure_ledger_state",
    "get_account",
    "new_account",
]
