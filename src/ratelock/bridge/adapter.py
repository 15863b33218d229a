# src/ratelock/bridge/adapter.py
from __future__ import annotations

"""Bridge adapter: burn-and-mint transport of ledger value across domains.

Outbound (source domain):
  1. the user moves tokens to the adapter account (send() does this)
  2. lock_or_burn(): validate the lane, capture the sender's personal rate,
     burn from the adapter-held balance, emit (dest_token, encoded rate)
  3. send() wraps the result into a BridgeMessage and hands it to the transport

Inbound (destination domain):
  handle_message() -> replay + lane checks -> release_or_mint(), which mints
  with the *transported* rate for an empty receiver instead of this domain's
  global rate. Consumed message ids live in ledger state next to the mint.

Rate policy: every payload carries the sender's personal rate. There is no
rate-less variant; a payload without a rate does not decode.

There is no refund path: once the transport has accepted a message, the burn is
committed pending delivery.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from ratelock.bridge.codec import (
    decode_message,
    decode_rate_payload,
    encode_message,
    encode_rate_payload,
    message_payload,
    seal_message,
    WireDecodeError,
)
from ratelock.bridge.lanes import Lane, LaneRegistry, RemoteDomainConfig
from ratelock.bridge.messages import (
    OUTBOUND_TRANSITIONS,
    BridgeMessage,
    LockOrBurnResult,
    OutboundState,
    OutboundTransfer,
)
from ratelock.bridge.transport import Transport
from ratelock.ledger.accrual import require_uint
from ratelock.ledger.constants import DEFAULT_ADAPTER_ID
from ratelock.ledger.errors import InvalidTransition, LedgerError, TransferRejected
from ratelock.ledger.ledger import RateLedger
from ratelock.structured_logging import log_event

_log = logging.getLogger("ratelock.bridge")


def _advance(rec: OutboundTransfer, new_state: OutboundState, *, reason: Optional[str] = None) -> None:
    allowed = OUTBOUND_TRANSITIONS.get(rec.state, ())
    if new_state not in allowed:
        raise InvalidTransition(
            "outbound_transition_not_allowed",
            {"transfer_id": rec.transfer_id, "from": rec.state.value, "to": new_state.value},
        )
    rec.history.append((rec.state.value, new_state.value))
    rec.state = new_state
    if reason is not None:
        rec.reason = reason


class BridgeAdapter:
    def __init__(
        self,
        ledger: RateLedger,
        transport: Transport,
        *,
        domain_id: str,
        token_id: str,
        adapter_id: str = DEFAULT_ADAPTER_ID,
        lanes: Optional[LaneRegistry] = None,
    ) -> None:
        self.ledger = ledger
        self.transport = transport
        self.domain_id = str(domain_id)
        self.token_id = str(token_id)
        self.adapter_id = str(adapter_id)
        self.lanes = lanes if lanes is not None else LaneRegistry(clock=ledger.now)
        self.outbound: Dict[str, OutboundTransfer] = {}
        self._nonce = 0
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lane administration (thin; authorization is external)
    # ------------------------------------------------------------------

    def allow_domain(self, cfg: RemoteDomainConfig) -> None:
        self.lanes.set_lane(cfg)

    def disallow_domain(self, remote_domain_id: str) -> None:
        self.lanes.remove_lane(remote_domain_id)

    def is_consumed(self, msg_id: str) -> bool:
        return self.ledger.is_consumed(msg_id)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _next_nonce(self) -> int:
        self._nonce += 1
        return self._nonce

    def _build_message(
        self,
        *,
        sender: str,
        receiver: str,
        amount: int,
        destination_domain: str,
        dest_token: str,
        rate: int,
        nonce: int,
    ) -> BridgeMessage:
        return seal_message(
            BridgeMessage(
                source_domain=self.domain_id,
                dest_domain=str(destination_domain),
                source_adapter=self.adapter_id,
                dest_token=dest_token,
                sender=str(sender),
                receiver=str(receiver),
                amount=int(amount),
                payload_hex=encode_rate_payload(int(rate)).hex(),
                nonce=int(nonce),
                sent_at=self.ledger.now(),
            )
        )

    def _reject(self, rec: OutboundTransfer, reason: str, **fields: Any) -> None:
        _advance(rec, OutboundState.REJECTED, reason=reason)
        log_event(_log, "bridge.outbound_rejected", transfer_id=rec.transfer_id, reason=reason, **fields)

    def _lock_or_burn(
        self, sender: str, receiver: str, amount: int, destination_domain: str
    ) -> Tuple[BridgeMessage, OutboundTransfer, Lane]:
        """Validate and burn. Leaves the record in BURNED; see _emitted()."""
        nonce = self._next_nonce()
        rec = OutboundTransfer(
            transfer_id=f"{self.domain_id}:{nonce}",
            sender=str(sender),
            amount=amount,
            dest_domain=str(destination_domain),
        )
        self.outbound[rec.transfer_id] = rec

        # Validated: lane allow-list, outbound rate limit, transport admission.
        try:
            lane = self.lanes.require(destination_domain, direction="outbound")
            lane.outbound.check(amount, direction="outbound", domain=str(destination_domain))
        except TransferRejected as e:
            self._reject(rec, e.reason)
            raise

        # Realize never changes a rate, so this read is current.
        rate = self.ledger.personal_rate_of(sender)
        msg = self._build_message(
            sender=sender,
            receiver=receiver,
            amount=amount,
            destination_domain=destination_domain,
            dest_token=lane.config.remote_token,
            rate=rate,
            nonce=nonce,
        )
        if not self.transport.validate_and_admit(msg):
            self._reject(rec, "transport_refused")
            raise TransferRejected("transport_refused", {"destination": str(destination_domain)})

        try:
            self.ledger.redeem(self.adapter_id, amount, caller=self.adapter_id)
        except LedgerError as e:
            self._reject(rec, e.reason, code=e.code)
            raise

        rec.personal_rate = int(rate)
        _advance(rec, OutboundState.BURNED)
        return msg, rec, lane

    def _emitted(self, msg: BridgeMessage, rec: OutboundTransfer, lane: Lane) -> None:
        lane.outbound.consume(rec.amount)
        _advance(rec, OutboundState.PAYLOAD_EMITTED)
        log_event(
            _log,
            "bridge.locked_or_burned",
            domain=self.domain_id,
            transfer_id=rec.transfer_id,
            msg_id=msg.msg_id,
            sender=rec.sender,
            amount=rec.amount,
            destination=rec.dest_domain,
            personal_rate=rec.personal_rate,
        )

    def lock_or_burn(self, sender: str, amount: int, destination_domain: str) -> LockOrBurnResult:
        """Burn `amount` from the adapter-held balance and capture `sender`'s rate.

        The adapter must already hold at least `amount` (send() arranges this).
        Returns the destination token identity and the encoded rate payload.
        """
        amt = require_uint(amount, "amount")
        with self._lock:
            msg, rec, lane = self._lock_or_burn(str(sender), str(sender), amt, str(destination_domain))
            self._emitted(msg, rec, lane)
        return LockOrBurnResult(dest_token=msg.dest_token, dest_payload=message_payload(msg))

    def quote_fee(self, receiver: str, amount: int, destination_domain: str) -> int:
        lane = self.lanes.require(destination_domain, direction="outbound")
        quote = self._build_message(
            sender=self.adapter_id,
            receiver=receiver,
            amount=require_uint(amount, "amount"),
            destination_domain=destination_domain,
            dest_token=lane.config.remote_token,
            rate=0,
            nonce=0,
        )
        return int(self.transport.compute_fee(str(destination_domain), quote))

    def send(self, sender: str, receiver: str, amount: int, destination_domain: str) -> str:
        """Move `amount` (or ALL) from `sender` here to `receiver` on `destination_domain`.

        Everything up to and including transport.send() is one unit against
        the local ledger: if any step fails, the sender keeps the tokens and
        the outbound record ends REJECTED. Returns the message id.
        """
        amt = require_uint(amount, "amount")
        dest = str(destination_domain)
        with self._lock:
            with self.ledger.atomic():
                moved = self.ledger.transfer(sender, self.adapter_id, amt)
                msg, rec, lane = self._lock_or_burn(str(sender), str(receiver), moved, dest)
                try:
                    msg_id = self.transport.send(dest, encode_message(msg))
                except Exception as e:
                    self._reject(rec, "transport_send_failed", error=str(e))
                    raise
            self._emitted(msg, rec, lane)

        log_event(_log, "bridge.sent", domain=self.domain_id, msg_id=msg_id, amount=moved, destination=dest)
        return msg_id

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _mint_inbound(
        self, receiver: str, amount: int, payload: bytes, *, source_domain: str, source_adapter: str
    ) -> Tuple[Lane, int]:
        lane = self.lanes.require(source_domain, direction="inbound")
        if str(source_adapter) != lane.config.remote_adapter:
            raise TransferRejected(
                "unknown_source_adapter",
                {"domain": str(source_domain), "source_adapter": str(source_adapter)},
            )
        lane.inbound.check(amount, direction="inbound", domain=str(source_domain))

        try:
            rate = decode_rate_payload(payload).personal_rate
        except WireDecodeError as e:
            raise TransferRejected("bad_payload", {"code": e.code, "error": str(e)}) from e

        self.ledger.issue_with_rate(receiver, amount, rate, caller=self.adapter_id)
        return lane, int(rate)

    def _released(self, lane: Lane, receiver: str, amount: int, source_domain: str, rate: int) -> None:
        lane.inbound.consume(amount)
        log_event(
            _log,
            "bridge.released_or_minted",
            domain=self.domain_id,
            receiver=str(receiver),
            amount=amount,
            source=str(source_domain),
            personal_rate=rate,
        )

    def release_or_mint(self, receiver: str, amount: int, payload: bytes, *, source_domain: str, source_adapter: str) -> int:
        """Mint `amount` to `receiver` using the rate carried in `payload`."""
        amt = require_uint(amount, "amount")
        with self._lock:
            lane, rate = self._mint_inbound(
                receiver, amt, payload, source_domain=source_domain, source_adapter=source_adapter
            )
            self._released(lane, receiver, amt, source_domain, rate)
        return amt

    def handle_message(self, raw: bytes) -> int:
        """Transport entry point. Each message id mints at most once.

        The consumed id is stored in ledger state in the same atomic block as
        the mint, so it survives a snapshot/restore of the ledger.
        """
        try:
            msg = decode_message(raw)
        except WireDecodeError as e:
            raise TransferRejected("bad_message", {"code": e.code, "error": str(e)}) from e

        with self._lock:
            if msg.dest_domain != self.domain_id:
                raise TransferRejected("wrong_destination", {"dest_domain": msg.dest_domain, "domain": self.domain_id})
            if msg.dest_token != self.token_id:
                raise TransferRejected("wrong_token", {"dest_token": msg.dest_token, "token": self.token_id})
            if self.ledger.is_consumed(msg.msg_id):
                raise TransferRejected("duplicate_message", {"msg_id": msg.msg_id})
            if not self.transport.validate_and_admit(msg):
                raise TransferRejected("transport_refused", {"source": msg.source_domain})

            amt = require_uint(msg.amount, "amount")
            with self.ledger.atomic():
                lane, rate = self._mint_inbound(
                    msg.receiver,
                    amt,
                    message_payload(msg),
                    source_domain=msg.source_domain,
                    source_adapter=msg.source_adapter,
                )
                self.ledger.mark_consumed(msg.msg_id, caller=self.adapter_id)
            self._released(lane, msg.receiver, amt, msg.source_domain, rate)
            return amt

    def outbound_in_state(self, state: OutboundState) -> List[OutboundTransfer]:
        return [r for r in self.outbound.values() if r.state == state]


__all__ = ["BridgeAdapter"]
