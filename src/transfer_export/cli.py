"""
Command line entry point.

Usage:
    transfer-export run --wallet 0x... --initial-block 23534906
    transfer-export run --max-iterations 10
    transfer-export fetch --last-blocks 2000

`run` resumes from the continuation file (data/state/<wallet>.json) when it
exists; --initial-block is only used on the very first run.
"""

import argparse
import signal
import sys
from functools import partial

from transfer_export.config import ETL_CONFIG, PATHS, RPC_URL, RUN_CONFIG, ConfigurationError, validate_config
from transfer_export.etl.export_loop import ExportParams, load_continuation, resolve_checkpoint, run_export
from transfer_export.etl.extract.export_range_to_jsonl import export_range_to_jsonl, resolve_export_range
from transfer_export.etl.extract.fetch_transfer_events import iter_transfer_events
from transfer_export.etl.extract.rpc_gateway import RpcGateway
from transfer_export.etl.load.sink_writer import count_transfer_events, get_db_connection


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export ERC-20 Transfer events of one wallet to Postgres"
    )
    parser.add_argument("--wallet", default=RUN_CONFIG["wallet_address"], help="Monitored wallet address")
    parser.add_argument("--contract", default=RUN_CONFIG["token_contract"], help="Token contract address")
    parser.add_argument("--rpc-url", default=RPC_URL, help="JSON-RPC endpoint")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Continuous, resumable export")
    run.add_argument("--initial-block", type=int, default=RUN_CONFIG["initial_from_block"],
                     help="Start block for the first run")
    run.add_argument("--batch-size", type=int, default=ETL_CONFIG["batch_size"],
                     help="Blocks per checkpoint advance (default: 10000)")
    run.add_argument("--table", default=RUN_CONFIG["table_name"], help="[schema.]table for events")
    run.add_argument("--state-file", default=None,
                     help="Continuation file (default: data/state/<wallet>.json)")
    run.add_argument("--max-iterations", type=int, default=None, help="Stop after N iterations")

    fetch = subparsers.add_parser("fetch", help="One-shot export of a block range to JSONL")
    fetch.add_argument("--from-block", type=int, default=None)
    fetch.add_argument("--to-block", type=int, default=None)
    fetch.add_argument("--last-blocks", type=int, default=2000,
                       help="Blocks back from the tip when --from-block is omitted")
    fetch.add_argument("--output", default=None, help="Output .jsonl file")

    return parser


def build_gateway(rpc_url: str) -> RpcGateway:
    return RpcGateway(rpc_url, pacing_delay=ETL_CONFIG["pacing_delay"])


def check_saved_params(params: ExportParams, args, state_path) -> None:
    """
    Compare a loaded continuation with the command line.

    Wallet and contract identify what the saved checkpoint means, so a
    mismatch is fatal. Table and batch size are kept from the state file
    with a warning.
    """
    if params.wallet_address.lower() != args.wallet.lower():
        raise ConfigurationError(
            f"State file {state_path} belongs to {params.wallet_address}, not {args.wallet}"
        )
    if params.token_contract.lower() != args.contract.lower():
        raise ConfigurationError(
            f"State file {state_path} tracks token {params.token_contract}, not {args.contract}"
        )
    if params.table_name != args.table:
        print(f"⚠ Ignoring --table {args.table}: state file {state_path} writes to {params.table_name}")
    if params.batch_size != args.batch_size:
        print(f"⚠ Ignoring --batch-size {args.batch_size}: state file {state_path} uses {params.batch_size}")


def command_run(args) -> int:
    state_path = args.state_file or PATHS["state"] / f"{args.wallet.lower()}.json"

    params = load_continuation(state_path)
    if params is None:
        params = ExportParams(
            wallet_address=args.wallet,
            token_contract=args.contract,
            table_name=args.table,
            batch_size=args.batch_size,
            initial_from_block=None if args.initial_block is None else int(args.initial_block),
        )
    else:
        check_saved_params(params, args, state_path)

    # fatal before any connection is opened
    resolve_checkpoint(params)

    stop_requested = []

    def request_stop(signum, frame):
        print(f"\n⚠ Signal {signum} received, finishing current iteration...")
        stop_requested.append(signum)

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    gateway = build_gateway(args.rpc_url)
    conn = get_db_connection()
    try:
        run_export(
            params,
            gateway,
            conn,
            state_path=state_path,
            max_iterations=args.max_iterations,
            should_stop=lambda: bool(stop_requested),
            fetch_events=partial(
                iter_transfer_events,
                max_block_range=ETL_CONFIG["rpc_max_block_range"],
                window_delay=ETL_CONFIG["window_delay"],
            ),
        )
        total = count_transfer_events(conn, params.table_name, params.wallet_address)
        print(f"📊 {params.table_name} holds {total} Transfer events for {params.wallet_address}")
    finally:
        conn.close()
        gateway.close()
    return 0


def command_fetch(args) -> int:
    gateway = build_gateway(args.rpc_url)
    try:
        chain_tip = gateway.get_chain_tip()
        print(f"✓ Current chain block: {chain_tip:,}")
        block_range = resolve_export_range(chain_tip, args.from_block, args.to_block, args.last_blocks)
        export_range_to_jsonl(gateway, args.wallet, args.contract, block_range, args.output)
    finally:
        gateway.close()
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        validate_config(
            {
                "wallet_address": args.wallet,
                "token_contract": args.contract,
                "initial_from_block": getattr(args, "initial_block", None),
                "table_name": getattr(args, "table", RUN_CONFIG["table_name"]),
            },
            rpc_url=args.rpc_url,
        )
        if args.command == "run":
            return command_run(args)
        return command_fetch(args)
    except ConfigurationError as e:
        print(f"✗ {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
