"""
fetch_transfer_events.py

Fetch Transfer events of one wallet for a block range and enrich them.

Flow for each 1000-block window:
1. eth_getLogs with `from` = wallet, then eth_getLogs with `to` = wallet
2. Merge both lists and keep one log per transactionHash
3. For each log: block timestamp + transaction receipt -> TransferEvent

Per-record problems (missing receipt, bad block, undecodable log) are printed
and the record is skipped. A failed log query is NOT skipped: it propagates,
so the caller keeps its checkpoint and retries the whole range later.
"""

import time
from typing import Callable, Iterator, List, Optional

from tqdm import tqdm

from transfer_export.config import ETL_CONFIG, TRANSFER_EVENT_TOPIC
from transfer_export.etl.extract.block_ranges import BlockRange, block_windows
from transfer_export.etl.extract.rpc_gateway import RpcGateway
from transfer_export.etl.transform.transfer_events import TransferEvent, build_transfer_event


def merge_unique_logs(*log_lists: list) -> list:
    """
    Merge log lists, one entry per transactionHash.

    A self-transfer (from == to == wallet) shows up in both directional
    queries; the first occurrence wins. Block and hash are identical either way.
    """
    unique = {}
    for logs in log_lists:
        for log in logs:
            unique.setdefault(log["transactionHash"], log)
    return list(unique.values())


def fetch_logs_for_window(
    gateway: RpcGateway,
    wallet_address: str,
    token_contract: str,
    from_block: int,
    to_block: int,
    event_topic: str = TRANSFER_EVENT_TOPIC,
) -> list:
    """Both directional queries for one window, merged and deduplicated."""
    logs_from = gateway.get_logs(token_contract, event_topic, {"from": wallet_address}, from_block, to_block)
    logs_to = gateway.get_logs(token_contract, event_topic, {"to": wallet_address}, from_block, to_block)
    return merge_unique_logs(logs_from, logs_to)


def enrich_log(gateway: RpcGateway, log: dict) -> Optional[TransferEvent]:
    """TransferEvent for one log, or None when the receipt cannot be found."""
    tx_hash = log["transactionHash"]
    timestamp = gateway.get_block_timestamp(int(log["blockNumber"], 16))

    receipt = gateway.get_transaction_receipt(tx_hash)
    if receipt is None:
        print(f"  ⚠ Receipt not found for transaction {tx_hash} after all retries, skipping event")
        return None

    return build_transfer_event(log, timestamp, receipt)


def iter_transfer_events(
    gateway: RpcGateway,
    wallet_address: str,
    token_contract: str,
    block_range: Optional[BlockRange],
    max_block_range: int = ETL_CONFIG["rpc_max_block_range"],
    window_delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[TransferEvent]:
    """
    Yield enriched TransferEvents for an inclusive block range.

    Args:
        gateway: Shared RpcGateway (retries each call)
        wallet_address: Monitored address (sender or receiver)
        token_contract: ERC-20 contract emitting the Transfer events
        block_range: Range to scan; None yields nothing
        max_block_range: Provider cap on eth_getLogs width
        window_delay: Pause between windows to avoid rate limiting
        sleep: Injected for tests

    Yields:
        TransferEvent, in window order
    """
    if block_range is None:
        return

    print(f"📡 Fetching Transfer events from blocks {block_range} for {wallet_address}")

    seen = set()
    first_window = True
    for window_from, window_to in block_windows(block_range.from_block, block_range.to_block, max_block_range):
        if not first_window and window_delay:
            sleep(window_delay)
        first_window = False

        logs = fetch_logs_for_window(gateway, wallet_address, token_contract, window_from, window_to)
        logs = [log for log in logs if log["transactionHash"] not in seen]
        print(f"  📦 Window {window_from}-{window_to}: {len(logs)} unique logs")

        for log in tqdm(logs, desc="Enriching logs", leave=False, disable=None):
            tx_hash = log["transactionHash"]
            seen.add(tx_hash)
            try:
                event = enrich_log(gateway, log)
            except Exception as e:
                # one bad record must not block checkpoint progress
                print(f"  ⚠ Error processing event {tx_hash}: {e}")
                continue

            if event is not None:
                yield event


def fetch_transfer_events(
    gateway: RpcGateway,
    wallet_address: str,
    token_contract: str,
    block_range: Optional[BlockRange],
    max_block_range: int = ETL_CONFIG["rpc_max_block_range"],
    window_delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[TransferEvent]:
    """Same as iter_transfer_events() but collected into a list."""
    events = list(iter_transfer_events(
        gateway,
        wallet_address,
        token_contract,
        block_range,
        max_block_range=max_block_range,
        window_delay=window_delay,
        sleep=sleep,
    ))
    print(f"✓ Fetched {len(events)} events")
    return events
