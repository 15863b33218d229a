# src/ratelock/ledger/ledger.py
from __future__ import annotations

"""Interest-bearing ledger with per-holder rates.

Each account carries:
  - principal      tokens actually issued (realized interest included)
  - personal_rate  fixed when the account last went from empty to non-empty
  - last_update    timestamp of the last realization

The live balance grows linearly from `last_update` at `personal_rate`.
Every operation that reads or moves principal first *realizes* the affected
accounts: pending interest is minted into principal and the clock is reset.

Rate assignment on an empty account:
  - issue()            -> current global rate
  - issue_with_rate()  -> caller-supplied rate (bridge inbound)
  - transfer()         -> sender's personal rate
A non-empty account never has its rate changed by inbound value.

The global rate is owner-controlled and may only decrease.
"""

import copy
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

from ratelock.ledger.accrual import accrued_balance, checked_add, require_uint
from ratelock.ledger.constants import ALL, DEFAULT_GLOBAL_RATE, DEFAULT_OWNER_ID, PRECISION
from ratelock.ledger.errors import (
    InsufficientBalance,
    InvalidAmount,
    RateCanOnlyDecrease,
    TransferRejected,
    Unauthorized,
)
from ratelock.ledger.state import (
    AccountView,
    LedgerSnapshot,
    ensure_account,
    ensure_ledger_state,
    get_account,
)
from ratelock.structured_logging import log_event

Json = Dict[str, Any]
Clock = Callable[[], int]

_log = logging.getLogger("ratelock.ledger")

# Recent notifications kept in memory; the full stream goes to the log.
EVENT_BUFFER_SIZE = 1024


def _system_clock() -> int:
    return int(time.time())


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) and not isinstance(v, bool) else ""


def _require_account_id(v: Any, field: str) -> str:
    s = _as_str(v)
    if not s:
        raise InvalidAmount("bad_account_id", {"field": field, "value": repr(v)})
    return s


class RateLedger:
    def __init__(
        self,
        *,
        ledger_id: str = "ratelock",
        owner: str = DEFAULT_OWNER_ID,
        initial_global_rate: int = DEFAULT_GLOBAL_RATE,
        precision: int = PRECISION,
        clock: Optional[Clock] = None,
        state: Optional[Json] = None,
        event_buffer: int = EVENT_BUFFER_SIZE,
    ) -> None:
        require_uint(initial_global_rate, "initial_global_rate")
        self._clock: Clock = clock or _system_clock
        self._lock = threading.RLock()
        self._events: Deque[Json] = deque(maxlen=max(1, int(event_buffer)))
        self._event_seq = 0
        self._state: Json = ensure_ledger_state(
            state if state is not None else {},
            ledger_id=_require_account_id(ledger_id, "ledger_id"),
            owner=_require_account_id(owner, "owner"),
            global_rate=int(initial_global_rate),
            precision=int(precision),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def from_json(cls, state: Json, *, clock: Optional[Clock] = None) -> "RateLedger":
        if not isinstance(state, dict):
            raise TypeError("ledger state must be a dict")
        params = state.get("params") if isinstance(state.get("params"), dict) else {}
        return cls(
            ledger_id=str(state.get("ledger_id") or "ratelock"),
            owner=str(params.get("owner") or DEFAULT_OWNER_ID),
            initial_global_rate=int(params.get("global_rate", DEFAULT_GLOBAL_RATE)),
            precision=int(params.get("precision", PRECISION)),
            clock=clock,
            state=copy.deepcopy(state),
        )

    def to_json(self) -> Json:
        with self._lock:
            return copy.deepcopy(self._state)

    # ------------------------------------------------------------------
    # Atomicity
    # ------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator["RateLedger"]:
        """Run a block all-or-nothing against this ledger.

        Any exception restores balances, rates, capabilities and consumed
        message ids to the state captured on entry, and drops the events
        emitted inside the block. Nested blocks roll back to their own entry
        point and re-raise, so the outermost block unwinds everything.
        """
        with self._lock:
            snap = LedgerSnapshot.capture(self._state)
            mark = self._event_seq
            try:
                yield self
            except BaseException:
                snap.restore_into(self._state)
                while self._events and int(self._events[-1]["seq"]) > mark:
                    self._events.pop()
                self._event_seq = mark
                raise

    # ------------------------------------------------------------------
    # Identity / params
    # ------------------------------------------------------------------

    @property
    def ledger_id(self) -> str:
        return str(self._state["ledger_id"])

    @property
    def owner(self) -> str:
        with self._lock:
            return str(self._state["params"]["owner"])

    @property
    def global_rate(self) -> int:
        with self._lock:
            return int(self._state["params"]["global_rate"])

    @property
    def rate_version(self) -> int:
        with self._lock:
            return int(self._state["params"].get("rate_version", 0))

    @property
    def precision(self) -> int:
        return int(self._state["params"]["precision"])

    def now(self) -> int:
        return int(self._clock())

    @property
    def events(self) -> List[Json]:
        """Most recent notifications, oldest first."""
        with self._lock:
            return copy.deepcopy(list(self._events))

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def _require_owner(self, caller: Any, action: str) -> None:
        if _as_str(caller) != self.owner:
            raise Unauthorized("owner_required", {"action": action, "caller": _as_str(caller)})

    def _require_minter(self, caller: Any, action: str) -> None:
        if not self.has_mint_capability(_as_str(caller)):
            raise Unauthorized("mint_capability_required", {"action": action, "caller": _as_str(caller)})

    def has_mint_capability(self, account: str) -> bool:
        with self._lock:
            return bool(self._state["minters"].get(_as_str(account), False))

    def grant_mint_capability(self, account: str, *, caller: str) -> Json:
        acct = _require_account_id(account, "account")
        with self.atomic():
            self._require_owner(caller, "grant_mint_capability")
            self._state["minters"][acct] = True
            return self._emit("MintCapabilityGranted", account=acct)

    def revoke_mint_capability(self, account: str, *, caller: str) -> Json:
        acct = _require_account_id(account, "account")
        with self.atomic():
            self._require_owner(caller, "revoke_mint_capability")
            self._state["minters"].pop(acct, None)
            return self._emit("MintCapabilityRevoked", account=acct)

    def transfer_ownership(self, new_owner: str, *, caller: str) -> Json:
        nxt = _require_account_id(new_owner, "new_owner")
        with self.atomic():
            self._require_owner(caller, "transfer_ownership")
            prev = self.owner
            self._state["params"]["owner"] = nxt
            return self._emit("OwnershipTransferred", previous=prev, owner=nxt)

    # ------------------------------------------------------------------
    # Global rate
    # ------------------------------------------------------------------

    def set_global_rate(self, new_rate: int, *, caller: str) -> Json:
        rate = require_uint(new_rate, "new_rate")
        with self.atomic():
            self._require_owner(caller, "set_global_rate")
            params = self._state["params"]
            current = int(params["global_rate"])
            # Single mutation point for the monotonic invariant.
            if rate >= current:
                raise RateCanOnlyDecrease("new_rate_not_lower", {"current": current, "requested": rate})
            params["global_rate"] = rate
            params["rate_version"] = int(params.get("rate_version", 0)) + 1
            return self._emit(
                "GlobalRateChanged",
                previous=current,
                rate=rate,
                rate_version=int(params["rate_version"]),
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _live_balance(self, rec: Json, now: int) -> int:
        return accrued_balance(
            int(rec.get("principal", 0)),
            int(rec.get("personal_rate", 0)),
            int(now) - int(rec.get("last_update", 0)),
            precision=self.precision,
        )

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._live_balance(get_account(self._state, _as_str(account)), self.now())

    def principal_of(self, account: str) -> int:
        with self._lock:
            return int(get_account(self._state, _as_str(account))["principal"])

    def personal_rate_of(self, account: str) -> int:
        with self._lock:
            return int(get_account(self._state, _as_str(account))["personal_rate"])

    def last_update_of(self, account: str) -> int:
        with self._lock:
            return int(get_account(self._state, _as_str(account))["last_update"])

    def account(self, account: str) -> AccountView:
        acct = _as_str(account)
        with self._lock:
            rec = get_account(self._state, acct)
            return AccountView.from_record(acct, rec, balance=self._live_balance(rec, self.now()))

    def accounts(self) -> List[str]:
        with self._lock:
            return sorted(self._state["accounts"].keys())

    def total_principal(self) -> int:
        with self._lock:
            return sum(int(a.get("principal", 0)) for a in self._state["accounts"].values())

    # ------------------------------------------------------------------
    # Bridge replay protection
    # ------------------------------------------------------------------

    def is_consumed(self, msg_id: str) -> bool:
        with self._lock:
            return _as_str(msg_id) in self._state["consumed"]

    def mark_consumed(self, msg_id: str, *, caller: str) -> Json:
        """Record an inbound bridge message as applied.

        Lives in ledger state so it commits (and persists) together with the
        mint it guards.
        """
        mid = _require_account_id(msg_id, "msg_id")
        with self.atomic():
            self._require_minter(caller, "mark_consumed")
            consumed = self._state["consumed"]
            if mid in consumed:
                raise TransferRejected("duplicate_message", {"msg_id": mid})
            consumed[mid] = self.now()
            return self._emit("MessageConsumed", msg_id=mid)

    # ------------------------------------------------------------------
    # Internal: realize + notifications
    # ------------------------------------------------------------------

    def _realize(self, account: str, now: int) -> Json:
        rec = ensure_account(self._state, account)
        live = self._live_balance(rec, now)
        principal = int(rec["principal"])
        if live > principal:
            rec["principal"] = live
            self._emit("InterestRealized", account=account, interest=live - principal, principal=live)
        # A clock that steps back must not reopen an interval already accrued.
        rec["last_update"] = max(int(rec.get("last_update", 0)), int(now))
        return rec

    def _emit(self, name: str, **fields: Any) -> Json:
        self._event_seq += 1
        ev: Json = {"event": name, "at": self.now(), "seq": self._event_seq}
        ev.update(fields)
        self._events.append(ev)
        log_event(_log, f"ledger.{name}", ledger_id=self.ledger_id, **fields)
        return dict(ev)

    def _mint(self, account: str, amount: int, rate: int, *, rate_source: str) -> Json:
        now = self.now()
        rec = self._realize(account, now)
        if int(rec["principal"]) == 0:
            rec["personal_rate"] = int(rate)
        rec["principal"] = checked_add(int(rec["principal"]), amount)
        return self._emit(
            "Issued",
            account=account,
            amount=amount,
            personal_rate=int(rec["personal_rate"]),
            rate_source=rate_source,
        )

    # ------------------------------------------------------------------
    # Value-moving operations
    # ------------------------------------------------------------------

    def issue(self, account: str, amount: int, *, caller: str) -> Json:
        """Mint `amount` to `account`; an empty account takes the global rate."""
        acct = _require_account_id(account, "account")
        amt = require_uint(amount, "amount")
        with self.atomic():
            self._require_minter(caller, "issue")
            return self._mint(acct, amt, self.global_rate, rate_source="global")

    def issue_with_rate(self, account: str, amount: int, rate: int, *, caller: str) -> Json:
        """Mint with an explicit rate for the empty-account branch.

        Used by the bridge adapter so a receiver inherits the rate recorded on
        the source domain instead of this domain's global rate.
        """
        acct = _require_account_id(account, "account")
        amt = require_uint(amount, "amount")
        r = require_uint(rate, "rate")
        with self.atomic():
            self._require_minter(caller, "issue_with_rate")
            return self._mint(acct, amt, r, rate_source="override")

    def redeem(self, account: str, amount: int, *, caller: str) -> int:
        """Burn `amount` (or ALL) from `account`. Returns the burned amount."""
        acct = _require_account_id(account, "account")
        amt = require_uint(amount, "amount")
        with self.atomic():
            self._require_minter(caller, "redeem")
            rec = self._realize(acct, self.now())
            balance = int(rec["principal"])
            if amt == ALL:
                amt = balance
            if amt > balance:
                raise InsufficientBalance("redeem_exceeds_balance", {"account": acct, "balance": balance, "amount": amt})
            rec["principal"] = balance - amt
            self._emit("Redeemed", account=acct, amount=amt)
            return amt

    def transfer(self, sender: str, recipient: str, amount: int) -> int:
        """Move `amount` (or ALL) of live balance. Returns the moved amount.

        An empty recipient inherits the sender's personal rate.
        """
        frm = _require_account_id(sender, "sender")
        to = _require_account_id(recipient, "recipient")
        amt = require_uint(amount, "amount")
        with self.atomic():
            now = self.now()
            fa = self._realize(frm, now)
            ta = self._realize(to, now)
            fb = int(fa["principal"])
            if amt == ALL:
                amt = fb
            if amt > fb:
                raise InsufficientBalance("transfer_exceeds_balance", {"account": frm, "balance": fb, "amount": amt})
            if frm != to:
                if int(ta["principal"]) == 0:
                    ta["personal_rate"] = int(fa["personal_rate"])
                fa["principal"] = fb - amt
                ta["principal"] = checked_add(int(ta["principal"]), amt)
            self._emit(
                "Transferred",
                sender=frm,
                recipient=to,
                amount=amt,
                recipient_rate=int(ta["personal_rate"]),
            )
            return amt


__all__ = ["Clock", "RateLedger"]
