"""
Transfer Export Configuration
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class ConfigurationError(ValueError):
    """Raised when the export cannot start with the given settings."""


# =============================================================================
# PROJECT PATHS
# =============================================================================

PROJECT_ROOT = Path(__file__).parent.parent.parent

PATHS = {
    "project_root": PROJECT_ROOT,
    "state": PROJECT_ROOT / "data" / "state",
    "exports": PROJECT_ROOT / "data" / "raw" / "transfers",
}

# =============================================================================
# EXTRACTION SETTINGS
# =============================================================================

ETL_CONFIG = {
    # RPC provider settings
    "rpc_max_block_range": 1000,  # blocks per eth_getLogs call (provider hard limit)
    "pacing_delay": 0.5,          # seconds before each RPC call
    "window_delay": 2.0,          # seconds between 1000-block windows
    "timeout": 30,

    # Checkpoint / sink settings
    "batch_size": 10000,          # blocks per checkpoint advance
    "flush_threshold": 1000,      # rows per insert, keeps payloads far below 4 MB
    "idle_poll_seconds": 12,      # wait when the chain tip has not moved

    # Retry policy for RPC reads
    "max_retries": 3,
    "retry_initial_delay": 1.0,
    "retry_backoff_coefficient": 2.0,
    "retry_max_delay": None,
}

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# =============================================================================
# RUN CONFIGURATION (from .env file)
# =============================================================================

RUN_CONFIG = {
    "wallet_address": os.getenv("WALLET_ADDRESS"),
    # USDC on Ethereum mainnet
    "token_contract": os.getenv("TOKEN_CONTRACT_ADDRESS", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"),
    "initial_from_block": os.getenv("INITIAL_FROM_BLOCK"),
    "table_name": os.getenv("TRANSFERS_TABLE", "raw.token_transfers"),
}

RPC_URL = os.getenv("ETH_RPC_URL", "https://ethereum-rpc.publicnode.com")

DB_CONFIG = {
    "host": os.getenv("POSTGRES_HOST", "localhost"),
    "port": os.getenv("POSTGRES_PORT", "5432"),
    "dbname": os.getenv("POSTGRES_DB", "transfer_export"),
    "user": os.getenv("POSTGRES_USER"),
    "password": os.getenv("POSTGRES_PASSWORD"),
}

# =============================================================================
# VALIDATION
# =============================================================================

def is_hex_address(value) -> bool:
    """True for a 0x-prefixed 20-byte hex string."""
    if not isinstance(value, str) or len(value) != 42 or not value.startswith("0x"):
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True


def validate_config(run_config: dict = None, rpc_url: str = None) -> bool:
    """Check that required settings are present."""
    run_config = RUN_CONFIG if run_config is None else run_config
    rpc_url = RPC_URL if rpc_url is None else rpc_url
    errors = []

    if not is_hex_address(run_config.get("wallet_address")):
        errors.append("WALLET_ADDRESS not set in .env or not a 0x address")

    if not is_hex_address(run_config.get("token_contract")):
        errors.append("TOKEN_CONTRACT_ADDRESS is not a 0x address")

    initial_block = run_config.get("initial_from_block")
    if initial_block is not None and not str(initial_block).isdigit():
        errors.append(f"INITIAL_FROM_BLOCK must be a block number, got {initial_block!r}")

    table_name = run_config.get("table_name") or ""
    if not all(part.isidentifier() for part in table_name.split(".")):
        errors.append(f"TRANSFERS_TABLE is not a valid [schema.]table name: {table_name!r}")

    if not rpc_url:
        errors.append("ETH_RPC_URL not set in .env")

    if errors:
        raise ConfigurationError("Config validation failed:\n" + "\n".join(errors))

    return True
