"""
Unit Tests for the event fetcher.

FakeGateway applies the directional topic filters like a node would, so a
self-transfer is returned by both queries.
"""

import pytest
from unittest.mock import Mock

from transfer_export.etl.extract.block_ranges import BlockRange
from transfer_export.etl.extract.fetch_transfer_events import (
    fetch_logs_for_window,
    fetch_transfer_events,
    iter_transfer_events,
    merge_unique_logs,
)

from conftest import OTHER, WALLET


class TestMergeUniqueLogs:

    def test_duplicate_hash_collapses(self, log_factory):
        """tx1 matched by both the `from` and `to` filter -> one log."""
        sent = log_factory("0x01", 10, sender=WALLET, receiver=WALLET)
        received = dict(sent)
        merged = merge_unique_logs([sent], [received])
        assert len(merged) == 1
        assert merged[0]["transactionHash"] == "0x01"

    def test_order_preserved(self, log_factory):
        a, b, c = (log_factory(h, 10) for h in ("0x0a", "0x0b", "0x0c"))
        assert [l["transactionHash"] for l in merge_unique_logs([a, b], [b, c])] == ["0x0a", "0x0b", "0x0c"]


class TestFetchLogsForWindow:

    def test_queries_both_directions(self, fake_gateway_cls, log_factory, token):
        gateway = fake_gateway_cls(logs=[
            log_factory("0x01", 10, sender=WALLET, receiver=OTHER),
            log_factory("0x02", 11, sender=OTHER, receiver=WALLET),
        ])

        logs = fetch_logs_for_window(gateway, WALLET, token, 0, 999)

        assert {l["transactionHash"] for l in logs} == {"0x01", "0x02"}
        filters = [call[1] for call in gateway.calls if call[0] == "get_logs"]
        assert filters == [{"from": WALLET}, {"to": WALLET}]


class TestFetchTransferEvents:

    def test_self_transfer_yields_one_event(self, fake_gateway_cls, log_factory, token):
        """Directional merge: same tx matched by both filters -> exactly one event."""
        gateway = fake_gateway_cls(logs=[log_factory("0x01", 10, sender=WALLET, receiver=WALLET)])

        events = fetch_transfer_events(gateway, WALLET, token, BlockRange(0, 100))

        assert [e.transaction_hash for e in events] == ["0x01"]
        receipts = [c for c in gateway.calls if c[0] == "get_transaction_receipt"]
        assert len(receipts) == 1

    def test_events_are_enriched(self, fake_gateway_cls, log_factory, token):
        gateway = fake_gateway_cls(logs=[log_factory("0x01", 10, value=42)])

        (event,) = fetch_transfer_events(gateway, WALLET, token, BlockRange(0, 100))

        assert event.timestamp == 1_700_000_010
        assert event.value == "42"
        assert event.receipt_status == "success"

    def test_range_split_into_provider_windows(self, fake_gateway_cls, log_factory, token):
        gateway = fake_gateway_cls(logs=[
            log_factory("0x01", 150),
            log_factory("0x02", 1150),
            log_factory("0x03", 2100),
        ])

        events = fetch_transfer_events(gateway, WALLET, token, BlockRange(100, 2100), max_block_range=1000)

        assert [e.block_number for e in events] == [150, 1150, 2100]
        windows = {(c[2], c[3]) for c in gateway.calls if c[0] == "get_logs"}
        assert windows == {(100, 1099), (1100, 2099), (2100, 2100)}

    def test_missing_receipt_skips_only_that_event(self, fake_gateway_cls, log_factory, token, capsys):
        gateway = fake_gateway_cls(
            logs=[log_factory("0x01", 10), log_factory("0x02", 11), log_factory("0x03", 12)],
            missing_receipts={"0x02"},
        )

        events = fetch_transfer_events(gateway, WALLET, token, BlockRange(0, 100))

        assert [e.transaction_hash for e in events] == ["0x01", "0x03"]
        assert "Receipt not found for transaction 0x02" in capsys.readouterr().out

    def test_enrichment_error_skips_only_that_event(self, fake_gateway_cls, log_factory, token, capsys):
        gateway = fake_gateway_cls(
            logs=[log_factory("0x01", 10), log_factory("0x02", 11)],
            broken_blocks={10},
        )

        events = fetch_transfer_events(gateway, WALLET, token, BlockRange(0, 100))

        assert [e.transaction_hash for e in events] == ["0x02"]
        assert "Error processing event 0x01" in capsys.readouterr().out

    def test_log_query_failure_propagates(self, fake_gateway_cls, token):
        """A failed eth_getLogs is a batch-level error, not a silent gap."""
        gateway = fake_gateway_cls()
        gateway.get_logs = Mock(side_effect=TimeoutError("node down"))

        with pytest.raises(TimeoutError):
            fetch_transfer_events(gateway, WALLET, token, BlockRange(0, 100))

    def test_none_range_makes_no_calls(self, fake_gateway_cls, token):
        gateway = fake_gateway_cls()
        assert list(iter_transfer_events(gateway, WALLET, token, None)) == []
        assert gateway.calls == []

    def test_window_delay_between_windows_only(self, fake_gateway_cls, token, no_sleep):
        sleep, sleeps = no_sleep
        gateway = fake_gateway_cls()

        fetch_transfer_events(gateway, WALLET, token, BlockRange(0, 2999), max_block_range=1000,
                              window_delay=2.0, sleep=sleep)

        assert sleeps == [2.0, 2.0]
