import pytest

from app.core.errors import MalformedEvent, UnknownEventKind
from app.utils.normalizer import event_order, normalize_event
from conftest import ALICE, NETWORK, VAULT, deposited_log, tx_hash, withdrawn_log, yield_log


def test_deposited_event():
    raw = deposited_log(12, 3, tx_hash(1).upper().replace("0X", "0x"), ALICE.upper().replace("0X", "0x"),
                        deposit_id=7, amount=250, shares=240, lock_tier=2)
    event = normalize_event(raw, NETWORK.upper(), VAULT.upper())

    assert event.kind == "Deposited"
    assert event.network == NETWORK
    assert event.vault_address == VAULT
    assert event.user_address == ALICE
    assert event.tx_hash == tx_hash(1)
    assert event.amount == "250"
    assert event.correlation_id == "7"
    assert event.block_height == 12
    assert event.log_index == 3
    assert event.extra == {"shares": "240", "lock_tier": 2}


def test_withdrawn_event_carries_yield():
    event = normalize_event(
        withdrawn_log(5, 0, tx_hash(2), ALICE, deposit_id=7, amount=100, yield_amount=15, shares_burned=90),
        NETWORK, VAULT,
    )
    assert event.extra == {"yield_amount": "15", "shares_burned": "90"}


def test_yield_distributed_has_no_user():
    event = normalize_event(yield_log(9, 1, tx_hash(3), amount=1000, index=10 ** 18), NETWORK, VAULT)
    assert event.user_address is None
    assert event.correlation_id is None
    assert event.extra == {"new_interest_index": str(10 ** 18)}


def test_bytes_hash_is_hex_encoded():
    raw = deposited_log(1, 0, bytes.fromhex("ab" * 32), ALICE, deposit_id=1, amount=1)
    assert normalize_event(raw, NETWORK, VAULT).tx_hash == "0x" + "ab" * 32


def test_unknown_kind_is_rejected():
    raw = deposited_log(1, 0, tx_hash(1), ALICE, deposit_id=1, amount=1)
    raw["event"] = "Transfer"
    with pytest.raises(UnknownEventKind):
        normalize_event(raw, NETWORK, VAULT)


def test_missing_field_is_rejected():
    raw = deposited_log(1, 0, tx_hash(1), ALICE, deposit_id=1, amount=1)
    del raw["args"]["amount"]
    with pytest.raises(MalformedEvent):
        normalize_event(raw, NETWORK, VAULT)


def test_missing_position_is_rejected():
    raw = deposited_log(1, 0, tx_hash(1), ALICE, deposit_id=1, amount=1)
    raw["logIndex"] = None
    with pytest.raises(MalformedEvent):
        normalize_event(raw, NETWORK, VAULT)


def test_events_sort_in_chain_order():
    events = [
        normalize_event(deposited_log(b, i, tx_hash(b * 10 + i), ALICE, deposit_id=1, amount=1), NETWORK, VAULT)
        for b, i in [(3, 0), (1, 2), (1, 0), (2, 5)]
    ]
    ordered = sorted(events, key=event_order)
    assert [(e.block_height, e.log_index) for e in ordered] == [(1, 0), (1, 2), (2, 5), (3, 0)]
