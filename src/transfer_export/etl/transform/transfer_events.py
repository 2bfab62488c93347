import json
from dataclasses import asdict, dataclass, fields
from typing import Optional

from eth_abi import decode as abi_decode  # For decoding the uint256 value in the data field


# ═══════════════════════════════════════════════════════════════════════════
# CANONICAL RECORD
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransferEvent:
    """
    One Transfer event of the monitored wallet, enriched with block time and receipt.

    Unique per (transaction_hash, block_number), which is also the sink's primary key.
    Column names match the sink table one to one.
    """
    block_number: int
    transaction_hash: str
    from_address: str
    to_address: str
    value: str          # uint256 as decimal string (overflows Int64)
    timestamp: int      # unix seconds

    # Fields from the transaction receipt
    receipt_block_hash: str
    receipt_block_number: int
    receipt_contract_address: Optional[str]
    receipt_cumulative_gas_used: int
    receipt_effective_gas_price: str
    receipt_from: str
    receipt_gas_used: int
    receipt_logs_bloom: str
    receipt_status: str
    receipt_to: Optional[str]
    receipt_transaction_index: int
    receipt_type: str
    receipt_logs: str   # JSON array

    @property
    def key(self) -> tuple:
        return (self.transaction_hash, self.block_number)

    def to_row(self) -> dict:
        return asdict(self)


TRANSFER_EVENT_COLUMNS = [f.name for f in fields(TransferEvent)]


# ═══════════════════════════════════════════════════════════════════════════
# HEX CONVERSION UTILITIES
# ═══════════════════════════════════════════════════════════════════════════

RECEIPT_STATUS = {0: "reverted", 1: "success"}

TRANSACTION_TYPES = {
    0: "legacy",
    1: "eip2930",
    2: "eip1559",
    3: "eip4844",
    4: "eip7702",
}


def hex_to_int(value) -> Optional[int]:
    """'0x1a' -> 26. None stays None, ints pass through."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


def topic_to_address(topic: str) -> str:
    """
    Extract address from 32-byte padded hex topic (last 40 chars).

    Example:
        Input:  "0x000000000000000000000000394311a6aaa0d8e3411d8b62de4578d41322d1bd"
        Output: "0x394311a6aaa0d8e3411d8b62de4578d41322d1bd"
    """
    return "0x" + topic[-40:].lower()


def decode_transfer_value(data: str) -> int:
    """Decode the non-indexed uint256 `value` of a Transfer log."""
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    if not raw:
        return 0
    (value,) = abi_decode(["uint256"], raw)
    return value


# ═══════════════════════════════════════════════════════════════════════════
# RECEIPT FLATTENING
# ═══════════════════════════════════════════════════════════════════════════

def receipt_logs_to_json(logs: list) -> str:
    """Receipt logs as a compact JSON array with decimal indices."""
    normalized = [
        {
            "address": log.get("address"),
            "topics": log.get("topics", []),
            "data": log.get("data"),
            "logIndex": str(hex_to_int(log.get("logIndex"))),
            "blockNumber": str(hex_to_int(log.get("blockNumber"))),
            "blockHash": log.get("blockHash"),
            "transactionHash": log.get("transactionHash"),
            "transactionIndex": str(hex_to_int(log.get("transactionIndex"))),
        }
        for log in logs or []
    ]
    return json.dumps(normalized, separators=(",", ":"))


def receipt_fields(receipt: dict) -> dict:
    """Flatten a raw eth_getTransactionReceipt result into receipt_* columns."""
    status = hex_to_int(receipt.get("status"))
    tx_type = hex_to_int(receipt.get("type")) if receipt.get("type") is not None else 0
    effective_gas_price = hex_to_int(receipt.get("effectiveGasPrice"))

    return {
        "receipt_block_hash": receipt["blockHash"],
        "receipt_block_number": hex_to_int(receipt["blockNumber"]),
        "receipt_contract_address": receipt.get("contractAddress") or None,
        "receipt_cumulative_gas_used": hex_to_int(receipt["cumulativeGasUsed"]),
        "receipt_effective_gas_price": str(effective_gas_price or 0),
        "receipt_from": receipt["from"],
        "receipt_gas_used": hex_to_int(receipt["gasUsed"]),
        "receipt_logs_bloom": receipt.get("logsBloom", ""),
        "receipt_status": RECEIPT_STATUS.get(status, str(status)),
        "receipt_to": receipt.get("to") or None,
        "receipt_transaction_index": hex_to_int(receipt["transactionIndex"]),
        "receipt_type": TRANSACTION_TYPES.get(tx_type, hex(tx_type)),
        "receipt_logs": receipt_logs_to_json(receipt.get("logs")),
    }


def build_transfer_event(log: dict, timestamp: int, receipt: dict) -> TransferEvent:
    """
    Combine a raw Transfer log, its block timestamp and its receipt.

    Topics layout for Transfer(address indexed from, address indexed to, uint256 value):
        topics[0] = event signature
        topics[1] = from (padded)
        topics[2] = to (padded)
        data      = value
    """
    topics = log["topics"]
    if len(topics) < 3:
        raise ValueError(f"Not a Transfer log, expected 3 topics: {log.get('transactionHash')}")

    return TransferEvent(
        block_number=hex_to_int(log["blockNumber"]),
        transaction_hash=log["transactionHash"],
        from_address=topic_to_address(topics[1]),
        to_address=topic_to_address(topics[2]),
        value=str(decode_transfer_value(log.get("data") or "0x")),
        timestamp=int(timestamp),
        **receipt_fields(receipt),
    )
