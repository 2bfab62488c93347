"""
Unit Tests for Transfer log decoding and receipt flattening.
"""

import json

import pytest

from transfer_export.etl.transform.transfer_events import (
    TRANSFER_EVENT_COLUMNS,
    build_transfer_event,
    decode_transfer_value,
    hex_to_int,
    receipt_fields,
    topic_to_address,
)

from conftest import OTHER, WALLET


class TestHexHelpers:

    def test_hex_to_int(self):
        assert hex_to_int("0x1a") == 26
        assert hex_to_int(None) is None
        assert hex_to_int(7) == 7

    def test_topic_to_address(self):
        topic = "0x000000000000000000000000394311A6AAA0D8E3411D8B62DE4578D41322D1BD"
        assert topic_to_address(topic) == WALLET

    def test_decode_uint256_beyond_int64(self):
        """Token amounts with 18 decimals overflow Int64; decoding stays exact."""
        value = 10**30 + 7
        assert decode_transfer_value("0x" + format(value, "064x")) == value

    def test_decode_empty_data_is_zero(self):
        assert decode_transfer_value("0x") == 0


class TestReceiptFields:

    def test_flattening(self, receipt_factory):
        fields = receipt_fields(receipt_factory("0xaa", 100))

        assert fields["receipt_block_number"] == 100
        assert fields["receipt_gas_used"] == 65_000
        assert fields["receipt_cumulative_gas_used"] == 210_000
        assert fields["receipt_effective_gas_price"] == str(30_000_000_000)
        assert fields["receipt_status"] == "success"
        assert fields["receipt_type"] == "eip1559"
        assert fields["receipt_transaction_index"] == 5
        assert fields["receipt_contract_address"] is None
        assert json.loads(fields["receipt_logs"]) == []

    def test_reverted_status(self, receipt_factory):
        assert receipt_fields(receipt_factory("0xaa", 1, status="0x0"))["receipt_status"] == "reverted"

    def test_receipt_logs_json(self, receipt_factory, log_factory):
        receipt = receipt_factory("0xaa", 100)
        receipt["logs"] = [log_factory("0xaa", 100)]

        logs = json.loads(receipt_fields(receipt)["receipt_logs"])

        assert logs[0]["logIndex"] == "3"
        assert logs[0]["blockNumber"] == "100"
        assert logs[0]["transactionHash"] == "0xaa"


class TestBuildTransferEvent:

    def test_event_fields(self, log_factory, receipt_factory):
        log = log_factory("0xaa", 100, sender=OTHER, receiver=WALLET, value=2_500_000)
        event = build_transfer_event(log, 1_700_000_000, receipt_factory("0xaa", 100))

        assert event.block_number == 100
        assert event.transaction_hash == "0xaa"
        assert event.from_address == OTHER
        assert event.to_address == WALLET
        assert event.value == "2500000"
        assert event.timestamp == 1_700_000_000
        assert event.key == ("0xaa", 100)

    def test_row_has_every_column(self, event_factory):
        row = event_factory().to_row()
        assert list(row) == TRANSFER_EVENT_COLUMNS

    def test_event_is_immutable(self, event_factory):
        event = event_factory()
        with pytest.raises(AttributeError):
            event.value = "0"

    def test_non_transfer_log_rejected(self, log_factory, receipt_factory):
        log = log_factory("0xaa", 100)
        log["topics"] = log["topics"][:1]
        with pytest.raises(ValueError, match="3 topics"):
            build_transfer_event(log, 0, receipt_factory("0xaa", 100))
