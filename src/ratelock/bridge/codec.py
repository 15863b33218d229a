# src/ratelock/bridge/codec.py
from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, replace
from typing import Any, Dict

from ratelock.bridge.messages import (
    MESSAGE_SCHEMA_VERSION,
    PAYLOAD_SCHEMA_VERSION,
    BridgeMessage,
    RatePayload,
)
from ratelock.ledger.constants import MAX_UINT256

Json = Dict[str, Any]


class WireDecodeError(RuntimeError):
    def __init__(self, code: str, msg: str) -> None:
        super().__init__(msg)
        self.code = code


class WireEncodeError(RuntimeError):
    def __init__(self, code: str, msg: str) -> None:
        super().__init__(msg)
        self.code = code


def dumps_json(obj: Any) -> bytes:
    try:
        return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise WireEncodeError("encode_failed", f"encode failed: {e}") from e


def loads_json(data: bytes | str) -> Any:
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise WireDecodeError("invalid_json", f"invalid json: {e}") from e
    except UnicodeDecodeError as e:
        raise WireDecodeError("invalid_utf8", f"invalid utf-8: {e}") from e


def _coerce_uint(v: Any, field: str) -> int:
    if isinstance(v, bool):
        raise WireDecodeError("invalid_int_field", f"Invalid int field '{field}': bool not allowed")
    if not isinstance(v, int):
        raise WireDecodeError("invalid_int_field", f"Invalid int field '{field}': expected int, got {type(v).__name__}")
    if v < 0 or v > MAX_UINT256:
        raise WireDecodeError("int_out_of_range", f"Invalid int field '{field}': out of uint256 range")
    return v


def _coerce_str(v: Any, field: str) -> str:
    if isinstance(v, str):
        return v
    raise WireDecodeError("invalid_str_field", f"Invalid str field '{field}': expected str, got {type(v).__name__}")


# ---------------------------------------------------------------------
# Rate payload
# ---------------------------------------------------------------------


def encode_rate_payload(rate: int) -> bytes:
    if isinstance(rate, bool) or not isinstance(rate, int) or rate < 0 or rate > MAX_UINT256:
        raise WireEncodeError("invalid_rate", f"personal_rate must be a uint256 int, got {rate!r}")
    return dumps_json(asdict(RatePayload(personal_rate=rate)))


def decode_rate_payload(data: bytes) -> RatePayload:
    raw = loads_json(data)
    if not isinstance(raw, dict):
        raise WireDecodeError("invalid_payload", "rate payload must be an object")
    version = raw.get("schema_version")
    if version != PAYLOAD_SCHEMA_VERSION:
        raise WireDecodeError("unsupported_schema_version", f"Unsupported payload schema version: {version!r}")
    if "personal_rate" not in raw:
        raise WireDecodeError("missing_rate", "rate payload has no personal_rate")
    extra = set(raw.keys()) - {"schema_version", "personal_rate"}
    if extra:
        raise WireDecodeError("unknown_fields", f"Unknown payload fields: {sorted(extra)}")
    return RatePayload(personal_rate=_coerce_uint(raw["personal_rate"], "personal_rate"), schema_version=version)


# ---------------------------------------------------------------------
# Bridge message
# ---------------------------------------------------------------------

_STR_FIELDS = ("source_domain", "dest_domain", "source_adapter", "dest_token", "sender", "receiver", "payload_hex")
_INT_FIELDS = ("amount", "nonce", "sent_at")


def compute_msg_id(msg: BridgeMessage) -> str:
    body = asdict(msg)
    body.pop("msg_id", None)
    return hashlib.sha256(dumps_json(body)).hexdigest()


def seal_message(msg: BridgeMessage) -> BridgeMessage:
    return replace(msg, msg_id=compute_msg_id(msg))


def encode_message(msg: BridgeMessage) -> bytes:
    if not msg.msg_id:
        msg = seal_message(msg)
    return dumps_json(asdict(msg))


def decode_message(data: bytes) -> BridgeMessage:
    raw = loads_json(data)
    if not isinstance(raw, dict):
        raise WireDecodeError("invalid_message", "bridge message must be an object")

    version = raw.get("schema_version")
    if version != MESSAGE_SCHEMA_VERSION:
        raise WireDecodeError("unsupported_schema_version", f"Unsupported message schema version: {version!r}")

    fields: Json = {"schema_version": version}
    for name in _STR_FIELDS:
        fields[name] = _coerce_str(raw.get(name), name)
    for name in _INT_FIELDS:
        fields[name] = _coerce_uint(raw.get(name), name)
    fields["msg_id"] = _coerce_str(raw.get("msg_id"), "msg_id")

    try:
        bytes.fromhex(fields["payload_hex"])
    except ValueError as e:
        raise WireDecodeError("invalid_payload_hex", f"payload_hex is not hex: {e}") from e

    msg = BridgeMessage(**fields)
    if msg.msg_id != compute_msg_id(msg):
        raise WireDecodeError("msg_id_mismatch", "msg_id does not match message body")
    return msg


def message_payload(msg: BridgeMessage) -> bytes:
    return bytes.fromhex(msg.payload_hex)


__all__ = [
    "WireDecodeError",
    "WireEncodeError",
    "compute_msg_id",
    "decode_message",
    "decode_rate_payload",
    "dumps_json",
    "encode_message",
    "encode_rate_payload",
    "loads_json",
    "message_payload",
    "seal_message",
]
