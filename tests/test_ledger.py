# tests/test_ledger.py
from __future__ import annotations

import threading

import pytest

from ratelock.ledger.constants import ALL, PRECISION
from ratelock.ledger.errors import (
    ArithmeticOverflow,
    InsufficientBalance,
    InvalidAmount,
    RateCanOnlyDecrease,
    TransferRejected,
    Unauthorized,
)
from ratelock.ledger.ledger import RateLedger
from ratelock.testing.clock import ManualClock

# 1% per second keeps the expected balances readable.
RATE = PRECISION // 100


def _ledger(rate: int = RATE) -> tuple[RateLedger, ManualClock]:
    clock = ManualClock()
    led = RateLedger(ledger_id="A", owner="OWNER", initial_global_rate=rate, clock=clock)
    led.grant_mint_capability("MINTER", caller="OWNER")
    return led, clock


def _event_names(led: RateLedger) -> list[str]:
    return [e["event"] for e in led.events]


def test_issue_assigns_global_rate_and_accrues() -> None:
    led, clock = _ledger()
    ev = led.issue("alice", 1000, caller="MINTER")

    assert ev["event"] == "Issued"
    assert ev["rate_source"] == "global"
    assert led.personal_rate_of("alice") == RATE
    assert led.balance_of("alice") == 1000

    clock.advance(10)
    assert led.balance_of("alice") == 1100
    # Reads never realize.
    assert led.principal_of("alice") == 1000

    view = led.account("alice")
    assert view.balance == 1100
    assert view.principal == 1000
    assert view.last_update == clock.now - 10


def test_balance_growth_is_linear_since_last_update() -> None:
    led, clock = _ledger()
    led.issue("alice", 12_345, caller="MINTER")
    t0 = clock.now
    for dt in (1, 7, 60, 3600):
        clock.set(t0 + dt)
        assert led.balance_of("alice") - 12_345 == (12_345 * RATE * dt) // PRECISION


def test_issue_to_non_empty_account_keeps_its_rate() -> None:
    led, clock = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    led.set_global_rate(RATE // 2, caller="OWNER")

    clock.advance(10)
    led.issue("alice", 100, caller="MINTER")

    # Pending interest realized first, then the mint lands on top.
    assert led.principal_of("alice") == 1200
    assert led.personal_rate_of("alice") == RATE
    assert "InterestRealized" in _event_names(led)


def test_immediate_redeem_returns_exact_amount() -> None:
    led, _ = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    assert led.redeem("alice", 1000, caller="MINTER") == 1000
    assert led.balance_of("alice") == 0
    assert led.principal_of("alice") == 0


def test_redeem_all_includes_accrued_interest() -> None:
    led, clock = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    clock.advance(10)

    assert led.redeem("alice", ALL, caller="MINTER") == 1100
    assert led.balance_of("alice") == 0


def test_redeem_over_balance_changes_nothing() -> None:
    led, clock = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    clock.advance(5)
    before = led.to_json()

    with pytest.raises(InsufficientBalance) as e:
        led.redeem("alice", 1051, caller="MINTER")

    assert e.value.code == "insufficient_balance"
    assert e.value.reason == "redeem_exceeds_balance"
    assert led.to_json() == before


def test_transfer_to_empty_recipient_inherits_sender_rate() -> None:
    led, _ = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    led.set_global_rate(RATE // 2, caller="OWNER")

    assert led.transfer("alice", "bob", 400) == 400

    assert led.personal_rate_of("bob") == RATE
    assert led.balance_of("alice") == 600
    assert led.balance_of("bob") == 400

    # Fresh issuance after the cut gets the new global rate.
    led.issue("carol", 10, caller="MINTER")
    assert led.personal_rate_of("carol") == RATE // 2


def test_transfer_to_non_empty_recipient_keeps_recipient_rate() -> None:
    led, _ = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    led.set_global_rate(RATE // 2, caller="OWNER")
    led.issue("carol", 10, caller="MINTER")

    led.transfer("alice", "carol", 100)
    assert led.personal_rate_of("carol") == RATE // 2
    assert led.balance_of("carol") == 110


def test_emptied_account_takes_new_rate_on_refill() -> None:
    led, _ = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    led.redeem("alice", ALL, caller="MINTER")
    led.set_global_rate(RATE // 4, caller="OWNER")

    led.issue("alice", 10, caller="MINTER")
    assert led.personal_rate_of("alice") == RATE // 4


def test_transfer_all_realizes_sender_first() -> None:
    led, clock = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    clock.advance(10)

    assert led.transfer("alice", "bob", ALL) == 1100
    assert led.balance_of("alice") == 0
    assert led.balance_of("bob") == 1100


def test_transfer_overspend_and_self_transfer() -> None:
    led, _ = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    before = led.to_json()

    with pytest.raises(InsufficientBalance):
        led.transfer("alice", "bob", 1001)
    assert led.to_json() == before

    assert led.transfer("alice", "alice", 500) == 500
    assert led.balance_of("alice") == 1000

    with pytest.raises(InsufficientBalance):
        led.transfer("alice", "alice", 1001)


def test_global_rate_can_only_decrease() -> None:
    led, _ = _ledger()

    with pytest.raises(RateCanOnlyDecrease):
        led.set_global_rate(RATE + 1, caller="OWNER")
    with pytest.raises(RateCanOnlyDecrease) as e:
        led.set_global_rate(RATE, caller="OWNER")
    assert e.value.code == "rate_can_only_decrease"
    assert led.rate_version == 0

    ev = led.set_global_rate(RATE - 1, caller="OWNER")
    assert ev["event"] == "GlobalRateChanged"
    assert ev["previous"] == RATE
    assert led.global_rate == RATE - 1
    assert led.rate_version == 1

    seen = [RATE]
    for r in (RATE // 2, RATE // 3, 0):
        led.set_global_rate(r, caller="OWNER")
        seen.append(led.global_rate)
    assert seen == sorted(seen, reverse=True)

    with pytest.raises(RateCanOnlyDecrease):
        led.set_global_rate(0, caller="OWNER")


def test_owner_only_operations() -> None:
    led, _ = _ledger()

    with pytest.raises(Unauthorized) as e:
        led.set_global_rate(1, caller="mallory")
    assert e.value.code == "forbidden"
    assert e.value.reason == "owner_required"

    with pytest.raises(Unauthorized):
        led.grant_mint_capability("mallory", caller="mallory")
    with pytest.raises(Unauthorized):
        led.revoke_mint_capability("MINTER", caller="mallory")
    with pytest.raises(Unauthorized):
        led.transfer_ownership("mallory", caller="mallory")

    led.transfer_ownership("NEW_OWNER", caller="OWNER")
    assert led.owner == "NEW_OWNER"
    with pytest.raises(Unauthorized):
        led.set_global_rate(1, caller="OWNER")
    led.set_global_rate(1, caller="NEW_OWNER")
    assert led.global_rate == 1


def test_mint_capability_gates_issue_and_redeem() -> None:
    led, _ = _ledger()

    with pytest.raises(Unauthorized) as e:
        led.issue("alice", 1, caller="alice")
    assert e.value.reason == "mint_capability_required"
    assert led.balance_of("alice") == 0
    assert "Issued" not in _event_names(led)

    with pytest.raises(Unauthorized):
        led.issue_with_rate("alice", 1, 5, caller="alice")

    led.issue("alice", 10, caller="MINTER")
    with pytest.raises(Unauthorized):
        led.redeem("alice", 10, caller="alice")

    led.revoke_mint_capability("MINTER", caller="OWNER")
    assert not led.has_mint_capability("MINTER")
    with pytest.raises(Unauthorized):
        led.issue("alice", 1, caller="MINTER")
    assert led.balance_of("alice") == 10


def test_issue_with_rate_only_applies_to_empty_accounts() -> None:
    led, _ = _ledger()
    ev = led.issue_with_rate("bob", 100, 42, caller="MINTER")
    assert ev["rate_source"] == "override"
    assert led.personal_rate_of("bob") == 42

    led.issue_with_rate("bob", 100, 7, caller="MINTER")
    assert led.personal_rate_of("bob") == 42
    assert led.principal_of("bob") == 200


def test_overflowing_issue_is_rejected_and_rolled_back() -> None:
    led, _ = _ledger(rate=0)
    led.issue("whale", 2**255, caller="MINTER")

    with pytest.raises(ArithmeticOverflow) as e:
        led.issue("whale", 2**255, caller="MINTER")
    assert e.value.code == "arithmetic_overflow"
    assert led.principal_of("whale") == 2**255


@pytest.mark.parametrize("bad", [-1, True, "10", 2**256])
def test_malformed_amounts_are_rejected(bad) -> None:
    led, _ = _ledger()
    with pytest.raises(InvalidAmount):
        led.issue("alice", bad, caller="MINTER")
    with pytest.raises(InvalidAmount):
        led.transfer("alice", "bob", bad)


def test_atomic_block_restores_state_on_error() -> None:
    led, _ = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    before = led.to_json()

    with pytest.raises(RuntimeError):
        with led.atomic():
            led.transfer("alice", "bob", 500)
            led.set_global_rate(1, caller="OWNER")
            raise RuntimeError("boom")

    assert led.to_json() == before
    assert led.balance_of("bob") == 0
    assert led.global_rate == RATE


def test_json_round_trip_preserves_balances() -> None:
    led, clock = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    led.transfer("alice", "bob", 250)
    clock.advance(3)

    restored = RateLedger.from_json(led.to_json(), clock=clock)
    assert restored.to_json() == led.to_json()
    assert restored.balance_of("alice") == led.balance_of("alice")
    assert restored.balance_of("bob") == led.balance_of("bob")
    assert restored.has_mint_capability("MINTER")


def test_from_json_rejects_corrupt_containers() -> None:
    with pytest.raises(TypeError):
        RateLedger.from_json({"ledger_id": "A", "accounts": []})


def test_concurrent_transfers_conserve_principal() -> None:
    led, _ = _ledger(rate=0)
    led.issue("alice", 1000, caller="MINTER")

    def _worker() -> None:
        for _ in range(50):
            led.transfer("alice", "bob", 1)

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert led.balance_of("alice") == 800
    assert led.balance_of("bob") == 200
    assert led.total_principal() == 1000


def test_equal_time_steps_give_equal_growth() -> None:
    led, clock = _ledger(rate=PRECISION // 7)
    led.issue("alice", 999_999, caller="MINTER")
    b0 = led.balance_of("alice")
    clock.advance(13)
    b1 = led.balance_of("alice")
    clock.advance(13)
    b2 = led.balance_of("alice")
    assert abs((b2 - b1) - (b1 - b0)) <= 1


def test_emptied_recipient_inherits_sender_rate_regardless_of_history() -> None:
    led, _ = _ledger()
    led.set_global_rate(RATE // 8, caller="OWNER")
    led.issue("bob", 50, caller="MINTER")
    assert led.personal_rate_of("bob") == RATE // 8
    led.redeem("bob", ALL, caller="MINTER")

    led.issue_with_rate("alice", 100, RATE, caller="MINTER")
    led.transfer("alice", "bob", 10)
    assert led.personal_rate_of("bob") == RATE


def test_backwards_clock_does_not_reaccrue_interest() -> None:
    led, clock = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    t0 = clock.now

    clock.set(t0 + 10)
    led.transfer("alice", "alice", 0)
    assert led.principal_of("alice") == 1100

    clock.set(t0)
    led.transfer("alice", "alice", 0)
    assert led.last_update_of("alice") == t0 + 10
    assert led.balance_of("alice") == 1100

    clock.set(t0 + 10)
    assert led.balance_of("alice") == 1100
    clock.set(t0 + 20)
    assert led.balance_of("alice") == 1210


def test_events_are_buffered_outside_ledger_state() -> None:
    clock = ManualClock()
    led = RateLedger(ledger_id="A", owner="OWNER", initial_global_rate=0, clock=clock, event_buffer=16)
    led.grant_mint_capability("MINTER", caller="OWNER")
    led.issue("alice", 1000, caller="MINTER")
    for _ in range(40):
        led.transfer("alice", "bob", 1)

    assert "events" not in led.to_json()
    events = led.events
    assert len(events) == 16
    assert [e["event"] for e in events] == ["Transferred"] * 16
    seqs = [e["seq"] for e in events]
    assert seqs == sorted(seqs) and seqs[-1] == 42


def test_rolled_back_block_drops_its_events() -> None:
    led, _ = _ledger()
    led.issue("alice", 1000, caller="MINTER")
    before = led.events

    with pytest.raises(RuntimeError):
        with led.atomic():
            led.transfer("alice", "bob", 500)
            led.issue("carol", 1, caller="MINTER")
            raise RuntimeError("boom")

    assert led.events == before
    ev = led.issue("dave", 1, caller="MINTER")
    assert ev["seq"] == before[-1]["seq"] + 1


def test_from_json_drops_legacy_event_list() -> None:
    led, _ = _ledger()
    led.issue("alice", 10, caller="MINTER")
    legacy = led.to_json()
    legacy["events"] = [{"event": "Issued", "at": 0}]

    restored = RateLedger.from_json(legacy)
    assert "events" not in restored.to_json()
    assert restored.events == []
    assert restored.principal_of("alice") == 10


def test_consumed_message_ids_live_in_ledger_state() -> None:
    led, _ = _ledger()
    assert not led.is_consumed("m-1")

    ev = led.mark_consumed("m-1", caller="MINTER")
    assert ev["event"] == "MessageConsumed"
    assert led.is_consumed("m-1")
    assert "m-1" in led.to_json()["consumed"]
    assert RateLedger.from_json(led.to_json()).is_consumed("m-1")

    with pytest.raises(TransferRejected) as e:
        led.mark_consumed("m-1", caller="MINTER")
    assert e.value.reason == "duplicate_message"

    with pytest.raises(Unauthorized):
        led.mark_consumed("m-2", caller="alice")


def test_consumed_mark_rolls_back_with_its_block() -> None:
    led, _ = _ledger()

    with pytest.raises(RuntimeError):
        with led.atomic():
            led.issue_with_rate("bob", 10, RATE, caller="MINTER")
            led.mark_consumed("m-1", caller="MINTER")
            raise RuntimeError("boom")

    assert not led.is_consumed("m-1")
    assert led.balance_of("bob") == 0
