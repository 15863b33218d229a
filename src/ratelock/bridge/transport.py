"""
ratelock: bridge transport (abstract messaging layer)

The adapter never talks to another domain directly. It hands encoded
BridgeMessage bytes to a Transport, and the transport later invokes the
destination adapter's handle_message() with the same bytes.

What the transport owns (out of the ledger's hands):
  * admission of a message onto a lane (validate_and_admit)
  * fee quoting (compute_fee)
  * delivery, including delay and ordering

InMemoryTransport is the in-process backend used by tests and local wiring.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, runtime_checkable

from ratelock.bridge.codec import decode_message
from ratelock.bridge.messages import BridgeMessage
from ratelock.structured_logging import log_event

_log = logging.getLogger("ratelock.transport")

Handler = Callable[[bytes], Any]


@runtime_checkable
class Transport(Protocol):
    def validate_and_admit(self, message: BridgeMessage) -> bool: ...
    def compute_fee(self, destination: str, message: BridgeMessage) -> int: ...
    def send(self, destination: str, raw: bytes) -> str: ...


@dataclass(frozen=True, slots=True)
class Envelope:
    destination: str
    msg_id: str
    raw: bytes


@dataclass(frozen=True, slots=True)
class Delivery:
    envelope: Envelope
    ok: bool
    result: Any = None
    error: Optional[str] = None


class InMemoryTransport:
    """
    Minimal in-process transport.

    - Does not open sockets
    - Queues sent messages FIFO; nothing is delivered until deliver_next()/deliver_all()
    - blocked_domains: destinations whose traffic validate_and_admit() refuses
    - A delivered envelope leaves the queue whether the handler succeeds or not;
      failed deliveries are kept in `failed` for inspection
    """

    def __init__(self, *, flat_fee: int = 0) -> None:
        self.flat_fee = int(flat_fee)
        self.blocked_domains: set[str] = set()
        self._handlers: Dict[str, Handler] = {}
        self._queue: Deque[Envelope] = deque()
        self.delivered: List[Delivery] = []
        self.failed: List[Delivery] = []

    def register(self, domain_id: str, handler: Handler) -> None:
        self._handlers[str(domain_id)] = handler

    def validate_and_admit(self, message: BridgeMessage) -> bool:
        return (
            message.dest_domain not in self.blocked_domains
            and message.source_domain not in self.blocked_domains
        )

    def compute_fee(self, destination: str, message: BridgeMessage) -> int:
        return self.flat_fee

    def send(self, destination: str, raw: bytes) -> str:
        msg = decode_message(raw)
        env = Envelope(destination=str(destination), msg_id=msg.msg_id, raw=bytes(raw))
        self._queue.append(env)
        log_event(_log, "transport.queued", destination=env.destination, msg_id=env.msg_id)
        return msg.msg_id

    def pending(self) -> List[Envelope]:
        return list(self._queue)

    def deliver_next(self) -> Optional[Delivery]:
        """Deliver the oldest queued envelope.

        Handler exceptions are recorded on the Delivery (and in `failed`); the
        transport is the boundary where a remote failure stops being the
        sender's problem.
        """
        if not self._queue:
            return None
        env = self._queue.popleft()
        handler = self._handlers.get(env.destination)
        if handler is None:
            d = Delivery(envelope=env, ok=False, error="no_handler")
            self.failed.append(d)
            log_event(_log, "transport.undeliverable", destination=env.destination, msg_id=env.msg_id)
            return d
        try:
            result = handler(env.raw)
        except Exception as e:
            d = Delivery(envelope=env, ok=False, error=str(e))
            self.failed.append(d)
            log_event(_log, "transport.delivery_failed", destination=env.destination, msg_id=env.msg_id, error=str(e))
            return d
        d = Delivery(envelope=env, ok=True, result=result)
        self.delivered.append(d)
        log_event(_log, "transport.delivered", destination=env.destination, msg_id=env.msg_id)
        return d

    def deliver_all(self) -> List[Delivery]:
        out: List[Delivery] = []
        while self._queue:
            d = self.deliver_next()
            if d is not None:
                out.append(d)
        return out

    def replay(self, envelope: Envelope) -> None:
        """Re-queue an already delivered envelope (duplicate-delivery tests)."""
        self._queue.append(envelope)


__all__ = ["Delivery", "Envelope", "InMemoryTransport", "Transport"]
