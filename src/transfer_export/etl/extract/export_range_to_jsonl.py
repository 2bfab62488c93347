"""
export_range_to_jsonl.py

One-shot export: fetch the wallet's Transfer events for a fixed block range
and write them to a JSONL file. No checkpoint, no database; handy for
inspecting data before starting the continuous export.

Usage:
    transfer-export fetch --last-blocks 2000
    transfer-export fetch --from-block 23534906 --to-block 23536906 --output transfers.jsonl
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from transfer_export.config import ETL_CONFIG, PATHS
from transfer_export.etl.extract.block_ranges import BlockRange
from transfer_export.etl.extract.extract_utils import (
    load_records_from_jsonl,
    save_metadata_json,
    save_records_to_jsonl,
)
from transfer_export.etl.extract.fetch_transfer_events import fetch_transfer_events
from transfer_export.etl.extract.rpc_gateway import RpcGateway


def resolve_export_range(
    chain_tip: int,
    from_block: Optional[int] = None,
    to_block: Optional[int] = None,
    last_blocks: int = 2000,
) -> BlockRange:
    """Explicit bounds win; otherwise the last `last_blocks` blocks up to the tip."""
    end = chain_tip if to_block is None else min(to_block, chain_tip)
    start = max(end - last_blocks, 0) if from_block is None else from_block
    return BlockRange(start, end)


def default_output_file(wallet_address: str, block_range: BlockRange) -> Path:
    return PATHS["exports"] / f"transfers_{wallet_address.lower()}_{block_range.from_block}_to_{block_range.to_block}.jsonl"


def export_range_to_jsonl(
    gateway: RpcGateway,
    wallet_address: str,
    token_contract: str,
    block_range: BlockRange,
    output_file=None,
) -> int:
    """
    Fetch, enrich and write events to JSONL, plus a .metadata.json beside it.

    The output file is overwritten, so re-running the same range gives the
    same file.

    Returns:
        Number of events written
    """
    output_file = Path(output_file) if output_file else default_output_file(wallet_address, block_range)

    print(f"🚀 Exporting Transfer events for {wallet_address}")
    print(f"   Token contract: {token_contract}")
    print(f"   Blocks: {block_range} ({block_range.width} blocks)")

    events = fetch_transfer_events(
        gateway,
        wallet_address,
        token_contract,
        block_range,
        max_block_range=ETL_CONFIG["rpc_max_block_range"],
        window_delay=ETL_CONFIG["window_delay"],
    )

    if not events:
        print("⚠ No events found. Try a wider block range.")
        return 0

    rows = [e.to_row() for e in events]
    written = save_records_to_jsonl(rows, output_file)

    reloaded = len(load_records_from_jsonl(output_file))
    if reloaded != written:
        raise RuntimeError(f"Wrote {written} events but {output_file} holds {reloaded}")

    metadata_file = save_metadata_json(
        {
            "total_events": written,
            "wallet_address": wallet_address,
            "token_contract": token_contract,
            "from_block": block_range.from_block,
            "to_block": block_range.to_block,
            "exported_at": datetime.now(timezone.utc).isoformat(),
        },
        output_file,
    )

    print(f"💾 Saved {written} events to: {output_file}")
    print(f"   Metadata: {metadata_file}")
    print("\n📋 Sample event:")
    print(json.dumps(rows[0], indent=2))
    return written
