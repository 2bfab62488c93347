from io import StringIO
from typing import Callable, List, Optional

import polars as pl
import psycopg2
from dotenv import load_dotenv

from transfer_export.config import DB_CONFIG, ETL_CONFIG
from transfer_export.etl.transform.transfer_events import TRANSFER_EVENT_COLUMNS, TransferEvent

# Load environment variables from .env so local runs work without exporting.
load_dotenv()

# Column types for the CSV -> COPY round trip; uint256 values stay strings until Postgres
POLARS_SCHEMA = {
    "block_number": pl.Int64,
    "transaction_hash": pl.Utf8,
    "from_address": pl.Utf8,
    "to_address": pl.Utf8,
    "value": pl.Utf8,
    "timestamp": pl.Int64,
    "receipt_block_hash": pl.Utf8,
    "receipt_block_number": pl.Int64,
    "receipt_contract_address": pl.Utf8,
    "receipt_cumulative_gas_used": pl.Int64,
    "receipt_effective_gas_price": pl.Utf8,
    "receipt_from": pl.Utf8,
    "receipt_gas_used": pl.Int64,
    "receipt_logs_bloom": pl.Utf8,
    "receipt_status": pl.Utf8,
    "receipt_to": pl.Utf8,
    "receipt_transaction_index": pl.Int64,
    "receipt_type": pl.Utf8,
    "receipt_logs": pl.Utf8,
}


def get_db_connection(
    host: Optional[str] = None,
    port: Optional[str] = None,
    dbname: Optional[str] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
):
    """
    Open a Postgres connection using psycopg2.

    - Parameters override environment variables; if omitted, we use DB_CONFIG.
    - Env vars: POSTGRES_HOST (default "localhost"), POSTGRES_PORT (default "5432"),
      POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD.
    - Autocommit stays OFF so every flush commits (or rolls back) as one unit.
    """
    conn = psycopg2.connect(
        host=host or DB_CONFIG["host"],
        port=port or DB_CONFIG["port"],
        database=dbname or DB_CONFIG["dbname"],
        user=user or DB_CONFIG["user"],
        password=password or DB_CONFIG["password"],
    )

    conn.autocommit = False
    return conn


def split_table_name(table_name: str) -> tuple:
    """'raw.token_transfers' -> ('raw', 'token_transfers'); no schema -> ('public', name)."""
    if "." in table_name:
        schema, table = table_name.split(".", 1)
        return schema, table
    return "public", table_name


def create_transfers_table(conn, table_name: str = "raw.token_transfers") -> str:
    """
    Create the transfers table and its indexes if they don't exist.

    The primary key (transaction_hash, block_number) is what makes re-delivery
    safe: inserts go through ON CONFLICT DO NOTHING, so replaying a batch after
    a failed iteration never produces a second copy of a row.
    """
    schema, table = split_table_name(table_name)

    create_sql = f"""
    CREATE SCHEMA IF NOT EXISTS {schema};
    CREATE TABLE IF NOT EXISTS {schema}.{table} (
        block_number                    BIGINT NOT NULL,
        transaction_hash                TEXT NOT NULL,
        from_address                    TEXT NOT NULL,
        to_address                      TEXT NOT NULL,
        value                           NUMERIC(78, 0) NOT NULL,
        timestamp                       TIMESTAMP NOT NULL,
        receipt_block_hash              TEXT,
        receipt_block_number            BIGINT,
        receipt_contract_address        TEXT,
        receipt_cumulative_gas_used     BIGINT,
        receipt_effective_gas_price     NUMERIC(78, 0),
        receipt_from                    TEXT,
        receipt_gas_used                BIGINT,
        receipt_logs_bloom              TEXT,
        receipt_status                  TEXT,
        receipt_to                      TEXT,
        receipt_transaction_index       INTEGER,
        receipt_type                    TEXT,
        receipt_logs                    TEXT,
        updated_at                      TIMESTAMP DEFAULT NOW(),
        PRIMARY KEY (transaction_hash, block_number)
    );
    CREATE INDEX IF NOT EXISTS idx_{table}_timestamp ON {schema}.{table} (timestamp);
    CREATE INDEX IF NOT EXISTS idx_{table}_from_address ON {schema}.{table} (from_address);
    CREATE INDEX IF NOT EXISTS idx_{table}_to_address ON {schema}.{table} (to_address);
    CREATE INDEX IF NOT EXISTS idx_{table}_block_number ON {schema}.{table} (block_number);
    """
    with conn.cursor() as cur:
        cur.execute(create_sql)
    conn.commit()

    print(f"✓ Table {schema}.{table} ready")
    return table_name


def events_to_dataframe(events: List[TransferEvent]) -> pl.DataFrame:
    """TransferEvents -> polars DataFrame in table column order, timestamp as datetime."""
    df = pl.DataFrame([e.to_row() for e in events], schema=POLARS_SCHEMA)
    return df.with_columns(pl.from_epoch("timestamp", time_unit="s")).select(TRANSFER_EVENT_COLUMNS)


def insert_transfer_events(conn, table_name: str, events: List[TransferEvent]) -> int:
    """
    COPY-based bulk insert with dedup on (transaction_hash, block_number).

    How it works:
    1. Events -> polars DataFrame -> in-memory CSV
    2. COPY the CSV into a temp staging table (dropped on commit)
    3. INSERT ... SELECT from staging ON CONFLICT DO NOTHING
    4. Commit; roll back and re-raise on any error

    Returns:
        Number of rows that were new to the table
    """
    if not events:
        return 0

    schema, table = split_table_name(table_name)
    df = events_to_dataframe(events)

    buffer = StringIO()
    df.write_csv(buffer, include_header=False)
    buffer.seek(0)

    columns = ", ".join(TRANSFER_EVENT_COLUMNS)
    staging = f"{table}_staging"

    try:
        with conn.cursor() as cur:
            cur.execute(f"""
                CREATE TEMP TABLE IF NOT EXISTS {staging}
                (LIKE {schema}.{table} INCLUDING DEFAULTS) ON COMMIT DROP
            """)
            cur.copy_expert(
                sql=f"COPY {staging} ({columns}) FROM STDIN WITH (FORMAT CSV)",
                file=buffer,
            )
            cur.execute(f"""
                INSERT INTO {schema}.{table} ({columns})
                SELECT {columns} FROM {staging}
                ON CONFLICT (transaction_hash, block_number) DO NOTHING
            """)
            inserted = cur.rowcount
        conn.commit()
    except Exception:
        conn.rollback()
        raise

    print(f"💾 INSERT INTO {schema}.{table}: {len(events)} records ({inserted} new)")
    return inserted


def count_transfer_events(conn, table_name: str, wallet_address: Optional[str] = None) -> int:
    """Row count of the transfers table, optionally only rows touching one wallet."""
    schema, table = split_table_name(table_name)
    with conn.cursor() as cur:
        if wallet_address:
            wallet = wallet_address.lower()
            cur.execute(
                f"SELECT COUNT(*) FROM {schema}.{table} WHERE from_address = %s OR to_address = %s;",
                (wallet, wallet),
            )
        else:
            cur.execute(f"SELECT COUNT(*) FROM {schema}.{table};")
        return cur.fetchone()[0]


class SinkWriter:
    """
    Buffers TransferEvents and writes them in bounded batches.

    One writer per iteration. Each flush is exactly one insert_fn call with
    everything buffered, then the buffer is cleared. Writes are not retried
    here; a failed flush propagates and the whole range is replayed next pass.
    """

    def __init__(
        self,
        conn,
        table_name: str,
        flush_threshold: int = ETL_CONFIG["flush_threshold"],
        insert_fn: Callable = insert_transfer_events,
    ):
        if flush_threshold < 1:
            raise ValueError(f"flush_threshold must be >= 1, got {flush_threshold}")
        self.conn = conn
        self.table_name = table_name
        self.flush_threshold = flush_threshold
        self.insert_fn = insert_fn
        self.buffer: List[TransferEvent] = []
        self.flush_calls = 0
        self.rows_written = 0

    def __len__(self):
        return len(self.buffer)

    def append(self, event: TransferEvent) -> None:
        self.buffer.append(event)

    def extend(self, events) -> int:
        """Append events one by one, flushing whenever the threshold is hit."""
        count = 0
        for event in events:
            self.append(event)
            self.flush_if_full()
            count += 1
        return count

    def flush_if_full(self) -> int:
        if len(self.buffer) >= self.flush_threshold:
            return self._flush()
        return 0

    def flush_remaining(self) -> int:
        if self.buffer:
            return self._flush()
        return 0

    def _flush(self) -> int:
        batch = self.buffer
        self.insert_fn(self.conn, self.table_name, batch)
        self.buffer = []
        self.flush_calls += 1
        self.rows_written += len(batch)
        return len(batch)
