"""
export_loop.py

Infinite, resumable export of one wallet's Transfer events.

The loop's whole resumable state is one small immutable record, ExportParams.
Every iteration takes the params it was started with and returns the params
for the next run (the "continuation"): same params when nothing was done,
last_processed_block moved to the range end when a range was flushed.
Nothing else survives between iterations, and progress is never re-read
from the sink.

State machine:
    Bootstrapping (once) -> create table, resolve checkpoint
    Iterating (forever)  -> tip -> next_range -> fetch -> flush -> advance -> re-arm
"""

import json
import os
import time
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Callable, Optional

from transfer_export.config import ETL_CONFIG, ConfigurationError
from transfer_export.etl.extract.block_ranges import next_range
from transfer_export.etl.extract.fetch_transfer_events import iter_transfer_events
from transfer_export.etl.extract.rpc_gateway import RpcGateway
from transfer_export.etl.load.sink_writer import SinkWriter, create_transfers_table


@dataclass(frozen=True)
class ExportCheckpoint:
    """Last block known to be fully processed and flushed for an address."""
    address: str
    last_processed_block: int


@dataclass(frozen=True)
class ExportParams:
    """Continuation record handed from one run of the loop to the next."""
    wallet_address: str
    token_contract: str
    table_name: str = "raw.token_transfers"
    batch_size: int = ETL_CONFIG["batch_size"]
    last_processed_block: Optional[int] = None   # carried-forward state
    initial_from_block: Optional[int] = None     # first run only


# =============================================================================
# CHECKPOINT + CONTINUATION
# =============================================================================

def resolve_checkpoint(params: ExportParams) -> ExportCheckpoint:
    """
    Starting checkpoint: carried state first, then the configured initial block.

    Raises:
        ConfigurationError: neither is set (fatal, the export cannot start)
    """
    if params.last_processed_block is not None:
        return ExportCheckpoint(params.wallet_address, int(params.last_processed_block))

    if params.initial_from_block is not None:
        return ExportCheckpoint(params.wallet_address, int(params.initial_from_block))

    raise ConfigurationError("Either last_processed_block or initial_from_block must be provided")


def advance(params: ExportParams, checkpoint: ExportCheckpoint) -> ExportParams:
    """Continuation for the next run; the initial block is dropped once state exists."""
    return replace(params, last_processed_block=checkpoint.last_processed_block, initial_from_block=None)


def save_continuation(path, params: ExportParams) -> None:
    """
    Write the continuation record as JSON, atomically (tmp file + rename).

    This file is the handoff to the next process after a restart; it is
    written after the re-arm decision and read only at startup.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(asdict(params), f, indent=2)
    os.replace(tmp_path, path)


def load_continuation(path) -> Optional[ExportParams]:
    """Continuation record from a previous process, or None if there is none."""
    path = Path(path)
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return ExportParams(**data)


# =============================================================================
# ONE ITERATION
# =============================================================================

def run_iteration(
    params: ExportParams,
    gateway: RpcGateway,
    writer_factory: Callable[[], SinkWriter],
    iteration: int = 1,
    fetch_events=iter_transfer_events,
) -> ExportParams:
    """
    Process at most one range and return the continuation params.

    How it works:
    1. Read the chain tip and ask next_range() for work
    2. No work -> return params unchanged
    3. Stream fetched events into a fresh SinkWriter (threshold flushes)
    4. flush_remaining(), and only after it returned, advance to range.to_block

    Any error in steps 1-4 is a batch-level error: it is printed and the
    unchanged params are returned, so the same range is retried next pass.
    """
    checkpoint = resolve_checkpoint(params)
    block_range = None

    try:
        chain_tip = gateway.get_chain_tip()
        block_range = next_range(checkpoint.last_processed_block, chain_tip, params.batch_size)

        if block_range is None:
            print(f"⏳ No new blocks. Current: {checkpoint.last_processed_block}, Latest: {chain_tip}")
            return params

        print(f"📦 Iteration {iteration}: processing blocks {block_range}")

        writer = writer_factory()
        events = fetch_events(gateway, params.wallet_address, params.token_contract, block_range)
        events_count = writer.extend(events)
        writer.flush_remaining()

    except Exception as e:
        where = f"batch {block_range}" if block_range else "iteration"
        print(f"✗ Error in {where}: {e}")
        return params

    if events_count > 0:
        print(f"✓ Processed {events_count} events from blocks {block_range}")

    new_checkpoint = replace(checkpoint, last_processed_block=block_range.to_block)
    print(f"✓ Progress updated: last processed block {new_checkpoint.last_processed_block}")
    return advance(params, new_checkpoint)


# =============================================================================
# SUPERVISORY LOOP
# =============================================================================

def run_export(
    params: ExportParams,
    gateway: RpcGateway,
    conn,
    flush_threshold: int = ETL_CONFIG["flush_threshold"],
    state_path=None,
    max_iterations: Optional[int] = None,
    idle_poll_seconds: float = ETL_CONFIG["idle_poll_seconds"],
    should_stop: Callable[[], bool] = lambda: False,
    sleep: Callable[[float], None] = time.sleep,
    fetch_events=iter_transfer_events,
) -> ExportParams:
    """
    Run the export until max_iterations or until should_stop() says so.

    Each pass calls run_iteration() with the params returned by the previous
    pass, like a continue-as-new restart: no other state is carried. When
    state_path is given, every continuation is saved there so a restarted
    process can pick it up with load_continuation().

    Args:
        params: Initial (or loaded) continuation record
        gateway: Shared RpcGateway, not closed here
        conn: Shared psycopg2 connection, not closed here
        flush_threshold: Rows per insert
        state_path: Where to persist continuations (None = memory only)
        max_iterations: Stop after this many passes (None = forever)
        idle_poll_seconds: Wait when the tip has not moved
        should_stop: Checked between passes for graceful shutdown
        sleep: Injected for tests
        fetch_events: Event source, iter_transfer_events by default

    Returns:
        The last continuation params
    """
    print(f"🚀 Starting Transfer events export for address {params.wallet_address}")

    # Bootstrapping
    start = resolve_checkpoint(params)
    create_transfers_table(conn, params.table_name)
    if params.last_processed_block is not None:
        print(f"📌 Using carried-forward state: block {start.last_processed_block}")
    else:
        print(f"📌 First run: starting from block {start.last_processed_block}")

    def writer_factory():
        return SinkWriter(conn, params.table_name, flush_threshold=flush_threshold)

    iteration = 0
    while max_iterations is None or iteration < max_iterations:
        if should_stop():
            print("🛑 Shutdown requested, not re-arming")
            break

        iteration += 1
        previous = resolve_checkpoint(params).last_processed_block
        next_params = run_iteration(params, gateway, writer_factory, iteration=iteration, fetch_events=fetch_events)
        current = resolve_checkpoint(next_params).last_processed_block

        if current < previous:
            raise RuntimeError(f"Checkpoint moved backwards: {previous} -> {current}")

        # re-arm: the returned params are the only thing the next pass sees
        params = next_params
        if state_path is not None:
            save_continuation(state_path, params)

        idle = current == previous
        more_to_go = max_iterations is None or iteration < max_iterations
        if idle and more_to_go and not should_stop():
            sleep(idle_poll_seconds)

    print(f"✓ Export stopped after {iteration} iterations at block {resolve_checkpoint(params).last_processed_block}")
    return params
