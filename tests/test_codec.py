# tests/test_codec.py
from __future__ import annotations

import json

import pytest

from ratelock.bridge.codec import (
    WireDecodeError,
    WireEncodeError,
    compute_msg_id,
    decode_message,
    decode_rate_payload,
    encode_message,
    encode_rate_payload,
    message_payload,
    seal_message,
)
from ratelock.bridge.messages import BridgeMessage, RatePayload
from ratelock.ledger.constants import MAX_UINT256


def _msg(**over) -> BridgeMessage:
    base = dict(
        source_domain="A",
        dest_domain="B",
        source_adapter="BRIDGE_ADAPTER",
        dest_token="tok-B",
        sender="alice",
        receiver="bob",
        amount=10,
        payload_hex=encode_rate_payload(123).hex(),
        nonce=1,
        sent_at=1_700_000_000,
    )
    base.update(over)
    return seal_message(BridgeMessage(**base))


def _tampered(msg: BridgeMessage, **over) -> bytes:
    raw = json.loads(encode_message(msg))
    raw.update(over)
    return json.dumps(raw).encode("utf-8")


def test_rate_payload_is_canonical_json() -> None:
    assert encode_rate_payload(5) == b'{"personal_rate":5,"schema_version":"1"}'
    assert decode_rate_payload(encode_rate_payload(MAX_UINT256)) == RatePayload(personal_rate=MAX_UINT256)


@pytest.mark.parametrize(
    "data,code",
    [
        (b'{"schema_version":"1"}', "missing_rate"),
        (b'{"personal_rate":5,"schema_version":"2"}', "unsupported_schema_version"),
        (b'{"personal_rate":true,"schema_version":"1"}', "invalid_int_field"),
        (b'{"personal_rate":-1,"schema_version":"1"}', "int_out_of_range"),
        (b'{"personal_rate":"5","schema_version":"1"}', "invalid_int_field"),
        (b'{"personal_rate":5,"schema_version":"1","x":1}', "unknown_fields"),
        (b"[5]", "invalid_payload"),
        (b"{not json", "invalid_json"),
        (b"\xff\xfe", "invalid_utf8"),
    ],
)
def test_rate_payload_decode_rejects(data: bytes, code: str) -> None:
    with pytest.raises(WireDecodeError) as e:
        decode_rate_payload(data)
    assert e.value.code == code


@pytest.mark.parametrize("bad", [-1, True, 2**256, "1"])
def test_rate_payload_encode_rejects(bad) -> None:
    with pytest.raises(WireEncodeError) as e:
        encode_rate_payload(bad)
    assert e.value.code == "invalid_rate"


def test_message_id_binds_the_body() -> None:
    msg = _msg()
    assert msg.msg_id == compute_msg_id(msg)
    assert _msg(nonce=2).msg_id != msg.msg_id

    decoded = decode_message(encode_message(msg))
    assert decoded == msg
    assert decode_rate_payload(message_payload(decoded)).personal_rate == 123


def test_encode_seals_unsealed_message() -> None:
    unsealed = BridgeMessage(
        source_domain="A",
        dest_domain="B",
        source_adapter="X",
        dest_token="t",
        sender="s",
        receiver="r",
        amount=1,
        payload_hex="",
        nonce=0,
        sent_at=0,
    )
    assert decode_message(encode_message(unsealed)).msg_id == compute_msg_id(unsealed)


@pytest.mark.parametrize(
    "over,code",
    [
        ({"amount": 11}, "msg_id_mismatch"),
        ({"amount": True}, "invalid_int_field"),
        ({"amount": -5}, "int_out_of_range"),
        ({"receiver": 7}, "invalid_str_field"),
        ({"payload_hex": "zz"}, "invalid_payload_hex"),
        ({"schema_version": "9"}, "unsupported_schema_version"),
    ],
)
def test_message_decode_rejects(over: dict, code: str) -> None:
    with pytest.raises(WireDecodeError) as e:
        decode_message(_tampered(_msg(), **over))
    assert e.value.code == code
