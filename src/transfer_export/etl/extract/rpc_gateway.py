"""
rpc_gateway.py

JSON-RPC read access to an EVM node, every call protected by retry.py.

Key characteristics:
- One pooled requests.Session per process, reused by every iteration
- RetryPolicy is the only retry layer: HTTP 429/5xx, timeouts, RPC error
  objects and missing receipts all count as one failed policy attempt
- Fixed pacing delay before each call to stay under provider rate limits
"""

import time
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from transfer_export.config import ETL_CONFIG
from transfer_export.etl.extract.retry import DEFAULT_RETRY_POLICY, RetryPolicy, call_with_retry


class RpcError(Exception):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, error):
        self.method = method
        self.error = error
        super().__init__(f"RPC Error in {method}: {error}")


class ReceiptNotFoundError(RpcError):
    """eth_getTransactionReceipt returned null (pruned or not yet indexed)."""

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__("eth_getTransactionReceipt", f"Transaction receipt {tx_hash} could not be found")


def create_session() -> requests.Session:
    """
    Create a requests session with connection pooling and no transport retries.

    One HTTP request per policy attempt: a 429/5xx comes back as a response,
    raise_for_status() turns it into an error and RetryPolicy decides.
    """
    session = requests.Session()
    retry_strategy = Retry(total=0, raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"Content-Type": "application/json"})
    return session


def address_to_topic(address: str) -> str:
    """
    Left-pad a 20-byte address to a 32-byte topic.

    Example:
        Input:  "0x394311a6aaa0d8e3411d8b62de4578d41322d1bd"
        Output: "0x000000000000000000000000394311a6aaa0d8e3411d8b62de4578d41322d1bd"
    """
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


def build_topics(event_topic: str, indexed_filter: dict) -> list:
    """
    Topics array for a Transfer(address indexed from, address indexed to, uint256) query.

    Position 1 is `from`, position 2 is `to`; None means "any".
    """
    unknown = set(indexed_filter) - {"from", "to"}
    if unknown:
        raise ValueError(f"Unsupported indexed argument(s): {sorted(unknown)}")

    topics = [event_topic, None, None]
    if indexed_filter.get("from"):
        topics[1] = address_to_topic(indexed_filter["from"])
    if indexed_filter.get("to"):
        topics[2] = address_to_topic(indexed_filter["to"])

    # trailing wildcards are implicit
    while topics[-1] is None:
        topics.pop()
    return topics


class RpcGateway:
    """Retry-wrapped facade over the four read calls the export needs."""

    def __init__(
        self,
        rpc_url: str,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        session: Optional[requests.Session] = None,
        timeout: int = ETL_CONFIG["timeout"],
        pacing_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.rpc_url = rpc_url
        self.policy = policy
        self.session = session or create_session()
        self.timeout = timeout
        self.pacing_delay = pacing_delay
        self.sleep = sleep

    def make_rpc_call(self, method: str, params: list):
        """
        Makes a single JSON-RPC 2.0 call (no retry).

        Returns:
            The 'result' field of the response (may be None)
        """
        if self.pacing_delay:
            self.sleep(self.pacing_delay)

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": 1,
        }
        response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            raise RpcError(method, result["error"])

        return result.get("result")

    def _call(self, op):
        return call_with_retry(self.policy, op, sleep=self.sleep)

    def get_chain_tip(self) -> int:
        """Current block number (eth_blockNumber)."""
        return self._call(lambda: int(self.make_rpc_call("eth_blockNumber", []), 16))

    def get_logs(
        self,
        contract: str,
        event_topic: str,
        indexed_filter: dict,
        from_block: int,
        to_block: int,
    ) -> list:
        """
        Fetches event logs for one inclusive block window using eth_getLogs.

        The window must respect the provider's max range (1000 blocks by default);
        splitting larger ranges is the caller's job.
        """
        filter_params = {
            "address": contract,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": build_topics(event_topic, indexed_filter),
        }
        logs = self._call(lambda: self.make_rpc_call("eth_getLogs", [filter_params]))
        return logs if logs else []

    def get_block_timestamp(self, block_number: int) -> int:
        """Unix timestamp of a block (eth_getBlockByNumber without transactions)."""

        def op():
            block = self.make_rpc_call("eth_getBlockByNumber", [hex(block_number), False])
            if block is None:
                raise RpcError("eth_getBlockByNumber", f"Block {block_number} not found")
            return int(block["timestamp"], 16)

        return self._call(op)

    def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """
        Receipt for tx_hash, or None when the node still has no receipt after all retries.

        A null receipt is retried like any other failure because it is usually
        an indexing lag. Giving up is not fatal: the caller drops that one event.
        """

        def op():
            receipt = self.make_rpc_call("eth_getTransactionReceipt", [tx_hash])
            if receipt is None:
                raise ReceiptNotFoundError(tx_hash)
            return receipt

        try:
            return self._call(op)
        except ReceiptNotFoundError:
            return None

    def close(self) -> None:
        self.session.close()
