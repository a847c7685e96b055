from __future__ import annotations

from typing import Any, Mapping, Optional

from .models import Approval, Deposit, Event, Transfer, Withdrawal
from .value_types import FilterKind, Topic, topic_to_address


# Topic0 constants (lowercase, with "0x") for the WETH9-style token events
APPROVAL_T0   = Topic("0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925")  # Approval(address,address,uint256)
TRANSFER_T0   = Topic("0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")  # Transfer(address,address,uint256)
DEPOSIT_T0    = Topic("0xe1fffcc4923d04b559f4d29a8bfc6cda04eb5b0d3c460751c2402c5c5cc9109c")  # Deposit(address,uint256)
WITHDRAWAL_T0 = Topic("0x7fcf532c15f0a6db0bd6d0e038bea71d30d808c7d98cb3bf7268a95bf5081b65")  # Withdrawal(address,uint256)

# kind -> (topic0, indexed topic position of the filtered address)
KIND_TOPICS: dict[FilterKind, tuple[Topic, int]] = {
    "Approval":     (APPROVAL_T0, 2),     # spender
    "TransferFrom": (TRANSFER_T0, 1),     # src
    "TransferTo":   (TRANSFER_T0, 2),     # dst
    "Deposit":      (DEPOSIT_T0, 1),      # dst
    "Withdrawal":   (WITHDRAWAL_T0, 1),   # src
}

# ---------- hex helpers ------------------------------------------------------

def _hex_to_int(v: Any) -> int:
    """Handles 0x..., decimal strings, and native ints."""
    if isinstance(v, int):
        return v
    s = str(v).lower()
    return int(s, 16) if s.startswith("0x") else int(s)

def _hexstr_to_bytes(v: Optional[str]) -> bytes:
    if not v:
        return b""
    h = v[2:] if v[:2].lower() == "0x" else v
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

# ---------------------------- public API --------------------------------------

def decode_log(raw: Mapping[str, Any]) -> Optional[Event]:
    """
    Turn one raw eth_getLogs entry into a typed event.
    Returns None for logs that are not one of the four token events or are
    malformed (wrong topic count, short data).
    """
    topics = [str(t).lower() for t in raw.get("topics") or []]
    if not topics:
        return None
    t0 = topics[0]
    data = _hexstr_to_bytes(raw.get("data"))
    if len(data) < 32:
        return None

    block_number = _hex_to_int(raw["blockNumber"])
    tx_hash = str(raw.get("transactionHash") or "").lower()
    log_index = _hex_to_int(raw.get("logIndex") or 0)
    value = _u256(_word(data, 0))

    if t0 == APPROVAL_T0 and len(topics) >= 3:
        return Approval(owner=topic_to_address(topics[1]), spender=topic_to_address(topics[2]),
                        value=value, block_number=block_number, tx_hash=tx_hash, log_index=log_index)
    if t0 == TRANSFER_T0 and len(topics) >= 3:
        return Transfer(src=topic_to_address(topics[1]), dst=topic_to_address(topics[2]),
                        value=value, block_number=block_number, tx_hash=tx_hash, log_index=log_index)
    if t0 == DEPOSIT_T0 and len(topics) >= 2:
        return Deposit(dst=topic_to_address(topics[1]),
                       value=value, block_number=block_number, tx_hash=tx_hash, log_index=log_index)
    if t0 == WITHDRAWAL_T0 and len(topics) >= 2:
        return Withdrawal(src=topic_to_address(topics[1]),
                          value=value, block_number=block_number, tx_hash=tx_hash, log_index=log_index)
    return None
