"""
Shared fixtures: raw JSON-RPC shaped logs/receipts and an in-memory gateway.

Nothing here touches the network or a database.
"""

import pytest

from transfer_export.config import TRANSFER_EVENT_TOPIC
from transfer_export.etl.extract.rpc_gateway import address_to_topic
from transfer_export.etl.transform.transfer_events import build_transfer_event

WALLET = "0x394311a6aaa0d8e3411d8b62de4578d41322d1bd"
OTHER = "0x1111111111111111111111111111111111111111"
TOKEN = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


def make_log(tx_hash, block_number, sender=OTHER, receiver=WALLET, value=1_000_000):
    return {
        "address": TOKEN,
        "topics": [TRANSFER_EVENT_TOPIC, address_to_topic(sender), address_to_topic(receiver)],
        "data": "0x" + format(value, "064x"),
        "blockNumber": hex(block_number),
        "transactionHash": tx_hash,
        "transactionIndex": "0x0",
        "blockHash": "0x" + "ab" * 32,
        "logIndex": "0x3",
        "removed": False,
    }


def make_receipt(tx_hash, block_number, status="0x1"):
    return {
        "blockHash": "0x" + "ab" * 32,
        "blockNumber": hex(block_number),
        "contractAddress": None,
        "cumulativeGasUsed": hex(210_000),
        "effectiveGasPrice": hex(30_000_000_000),
        "from": OTHER,
        "gasUsed": hex(65_000),
        "logs": [],
        "logsBloom": "0x" + "00" * 256,
        "status": status,
        "to": TOKEN,
        "transactionHash": tx_hash,
        "transactionIndex": "0x5",
        "type": "0x2",
    }


def make_event(tx_hash="0xaa", block_number=100, timestamp=1_700_000_000):
    return build_transfer_event(make_log(tx_hash, block_number), timestamp, make_receipt(tx_hash, block_number))


class FakeGateway:
    """
    In-memory stand-in for RpcGateway.

    logs: list of raw logs; get_logs filters them by direction and window,
    the same way a node applies topic filters.
    """

    def __init__(self, logs=(), chain_tip=0, missing_receipts=(), broken_blocks=()):
        self.logs = list(logs)
        self.chain_tip = chain_tip
        self.missing_receipts = set(missing_receipts)
        self.broken_blocks = set(broken_blocks)
        self.calls = []

    def get_chain_tip(self):
        self.calls.append(("get_chain_tip",))
        return self.chain_tip

    def get_logs(self, contract, event_topic, indexed_filter, from_block, to_block):
        self.calls.append(("get_logs", dict(indexed_filter), from_block, to_block))
        result = []
        for log in self.logs:
            block = int(log["blockNumber"], 16)
            if not from_block <= block <= to_block:
                continue
            if "from" in indexed_filter and log["topics"][1] != address_to_topic(indexed_filter["from"]):
                continue
            if "to" in indexed_filter and log["topics"][2] != address_to_topic(indexed_filter["to"]):
                continue
            result.append(log)
        return result

    def get_block_timestamp(self, block_number):
        self.calls.append(("get_block_timestamp", block_number))
        if block_number in self.broken_blocks:
            raise RuntimeError(f"block {block_number} unavailable")
        return 1_700_000_000 + block_number

    def get_transaction_receipt(self, tx_hash):
        self.calls.append(("get_transaction_receipt", tx_hash))
        if tx_hash in self.missing_receipts:
            return None
        log = next(l for l in self.logs if l["transactionHash"] == tx_hash)
        return make_receipt(tx_hash, int(log["blockNumber"], 16))

    def close(self):
        pass


class DedupStore:
    """insert_fn stand-in with the sink's contract: rows keyed by (transaction_hash, block_number)."""

    def __init__(self):
        self.rows = {}
        self.insert_calls = []

    def insert(self, conn, table_name, events):
        self.insert_calls.append(list(events))
        new = 0
        for event in events:
            if event.key not in self.rows:
                new += 1
            self.rows[event.key] = event
        return new

    def __len__(self):
        return len(self.rows)


@pytest.fixture
def wallet():
    return WALLET


@pytest.fixture
def token():
    return TOKEN


@pytest.fixture
def log_factory():
    return make_log


@pytest.fixture
def receipt_factory():
    return make_receipt


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def fake_gateway_cls():
    return FakeGateway


@pytest.fixture
def dedup_store():
    return DedupStore()


@pytest.fixture
def no_sleep():
    sleeps = []
    return sleeps.append, sleeps
