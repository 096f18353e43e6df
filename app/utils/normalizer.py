# app/utils/normalizer.py
"""
Convert decoded vault logs into NormalizedEvent.

The input is the mapping web3's ``ContractEvent.process_log`` produces
(``event``, ``args``, ``blockNumber``, ``logIndex``, ``transactionHash``).
No I/O happens here: an unknown event name or a missing argument is rejected.
"""
from typing import Any, Callable, Dict, Mapping, Tuple

from app.core.errors import MalformedEvent, UnknownEventKind
from app.schemas.vault_event import NormalizedEvent


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).hex()
    else:
        text = str(value)
    text = text.lower()
    return text if text.startswith("0x") else f"0x{text}"


def _int_str(value: Any) -> str:
    if isinstance(value, bool):
        raise MalformedEvent(f"Expected an integer, got {value!r}")
    return str(int(value))


def _arg(args: Mapping[str, Any], name: str, kind: str) -> Any:
    if name not in args:
        raise MalformedEvent(f"{kind} event is missing '{name}'")
    return args[name]


def _deposited(args: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    fields = {
        "user_address": _hex(_arg(args, "user", "Deposited")),
        "correlation_id": _int_str(_arg(args, "depositId", "Deposited")),
        "amount": _int_str(_arg(args, "amount", "Deposited")),
    }
    extra = {
        "shares": _int_str(_arg(args, "shares", "Deposited")),
        "lock_tier": int(_arg(args, "lockTier", "Deposited")),
    }
    return fields, extra


def _withdrawn(args: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    fields = {
        "user_address": _hex(_arg(args, "user", "Withdrawn")),
        "correlation_id": _int_str(_arg(args, "depositId", "Withdrawn")),
        "amount": _int_str(_arg(args, "amount", "Withdrawn")),
    }
    extra = {
        "yield_amount": _int_str(_arg(args, "yield", "Withdrawn")),
        "shares_burned": _int_str(_arg(args, "sharesBurned", "Withdrawn")),
    }
    return fields, extra


def _yield_distributed(args: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    fields = {
        "user_address": None,
        "correlation_id": None,
        "amount": _int_str(_arg(args, "amount", "YieldDistributed")),
    }
    extra = {
        "new_interest_index": _int_str(_arg(args, "newInterestIndex", "YieldDistributed")),
    }
    return fields, extra


EVENT_HANDLERS: Dict[str, Callable[[Mapping[str, Any]], Tuple[Dict[str, Any], Dict[str, Any]]]] = {
    "Deposited": _deposited,
    "Withdrawn": _withdrawn,
    "YieldDistributed": _yield_distributed,
}


def normalize_event(raw: Mapping[str, Any], network: str, vault_address: str) -> NormalizedEvent:
    kind = raw.get("event")
    handler = EVENT_HANDLERS.get(kind)
    if handler is None:
        raise UnknownEventKind(f"Unrecognized vault event kind: {kind!r}")

    args = raw.get("args")
    if args is None:
        raise MalformedEvent(f"{kind} event has no args")
    for key in ("blockNumber", "logIndex", "transactionHash"):
        if raw.get(key) is None:
            raise MalformedEvent(f"{kind} event is missing '{key}'")

    fields, extra = handler(args)
    return NormalizedEvent(
        kind=kind,
        network=network.lower(),
        vault_address=vault_address.lower(),
        block_height=int(raw["blockNumber"]),
        log_index=int(raw["logIndex"]),
        tx_hash=_hex(raw["transactionHash"]),
        extra=extra,
        **fields,
    )


def event_order(event: NormalizedEvent) -> Tuple[int, int]:
    return (event.block_height, event.log_index)
