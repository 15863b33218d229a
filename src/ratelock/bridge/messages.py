from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

DomainId = str
AccountId = str

# Bump when the payload layout changes; decoders reject unknown versions.
PAYLOAD_SCHEMA_VERSION = "1"
MESSAGE_SCHEMA_VERSION = "1"


class OutboundState(str, Enum):
    VALIDATED = "VALIDATED"
    BURNED = "BURNED"
    PAYLOAD_EMITTED = "PAYLOAD_EMITTED"
    REJECTED = "REJECTED"


# Allowed forward transitions; PAYLOAD_EMITTED and REJECTED are terminal.
OUTBOUND_TRANSITIONS: Dict[OutboundState, Tuple[OutboundState, ...]] = {
    OutboundState.VALIDATED: (OutboundState.BURNED, OutboundState.REJECTED),
    OutboundState.BURNED: (OutboundState.PAYLOAD_EMITTED, OutboundState.REJECTED),
    OutboundState.PAYLOAD_EMITTED: (),
    OutboundState.REJECTED: (),
}


@dataclass(frozen=True, slots=True)
class RatePayload:
    """Side-channel data carried with every cross-domain transfer."""

    personal_rate: int
    schema_version: str = PAYLOAD_SCHEMA_VERSION


@dataclass(frozen=True, slots=True)
class LockOrBurnResult:
    dest_token: str
    dest_payload: bytes


@dataclass(frozen=True, slots=True)
class BridgeMessage:
    """
    Transport envelope for one transfer.

    - payload_hex is the encoded RatePayload (hex of canonical JSON bytes)
    - msg_id is derived from the other fields (see codec.compute_msg_id)
    """

    source_domain: DomainId
    dest_domain: DomainId
    source_adapter: AccountId
    dest_token: str
    sender: AccountId
    receiver: AccountId
    amount: int
    payload_hex: str
    nonce: int
    sent_at: int
    schema_version: str = MESSAGE_SCHEMA_VERSION
    msg_id: str = ""


@dataclass(slots=True)
class OutboundTransfer:
    transfer_id: str
    sender: AccountId
    amount: int
    dest_domain: DomainId
    state: OutboundState = OutboundState.VALIDATED
    personal_rate: Optional[int] = None
    reason: Optional[str] = None
    history: list = field(default_factory=list)
