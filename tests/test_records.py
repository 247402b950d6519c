"""
Unit tests for record value types and processing results
"""
from datetime import datetime, timezone
import dataclasses

import pytest

from records import DiscardRecord, HoldRecord, ProcessingResult, ProcessingStatus, Record


@pytest.mark.unit
class TestHoldRecord:

    def test_key_is_deterministic(self):
        a = HoldRecord("G0956250001234A", "PROD", "H01")
        b = HoldRecord("G0956250001234A", "PROD", "H01", placed_at=datetime(2024, 8, 13))
        assert a.key() == b.key() == "G0956250001234A|PROD|H01"

    @pytest.mark.parametrize("other", [
        HoldRecord("G0956250001234B", "PROD", "H01"),
        HoldRecord("G0956250001234A", "GIFT", "H01"),
        HoldRecord("G0956250001234A", "PROD", "H02"),
    ])
    def test_key_differs_when_identifying_field_differs(self, other):
        assert HoldRecord("G0956250001234A", "PROD", "H01").key() != other.key()

    def test_valid_record(self):
        assert HoldRecord("G0956250001234A", "PROD", "H01").is_valid()

    def test_all_products_sentinel_is_valid(self):
        assert HoldRecord("G0956250001234A", "ALL", "COS").is_valid()

    @pytest.mark.parametrize("record", [
        HoldRecord("", "PROD", "H01"),
        HoldRecord("G0956250001234A", "", "H01"),
        HoldRecord("G0956250001234A", "PRO", "H01"),
        HoldRecord("G0956250001234A", "PROD", "H"),
    ])
    def test_invalid_records(self, record):
        assert not record.is_valid()

    def test_is_immutable(self):
        record = HoldRecord("G0956250001234A", "PROD", "H01")
        with pytest.raises(dataclasses.FrozenInstanceError):
            record.hold_code = "H02"

    def test_identity_fields(self):
        assert HoldRecord("G1", "PROD", "H01").identity() == {
            "donationNumber": "G1", "productCode": "PROD", "holdCode": "H01",
        }


@pytest.mark.unit
class TestDiscardRecord:

    def test_key_ignores_hold_code_and_timestamp(self):
        a = DiscardRecord("G1", "PROD", "LOC1", hold_code="H01")
        b = DiscardRecord("G1", "PROD", "LOC1", placed_at=datetime(2024, 1, 1))
        assert a.key() == b.key() == "G1|PROD|LOC1"

    def test_validity_requires_location(self):
        assert DiscardRecord("G1", "PROD", "LOC1").is_valid()
        assert not DiscardRecord("G1", "PROD", "").is_valid()
        assert not DiscardRecord("", "PROD", "LOC1").is_valid()


@pytest.mark.unit
class TestProcessingResult:

    def test_success_factory(self):
        result = ProcessingResult.success(HoldRecord("G1", "PROD", "H01"))
        assert result.status is ProcessingStatus.SUCCESS
        assert result.is_success
        assert not result.has_error
        assert result.processed_at.tzinfo is timezone.utc

    def test_failure_factory(self):
        result = ProcessingResult.failure(HoldRecord("G1", "PROD", "H01"), "Hold not found")
        assert not result.is_success
        assert result.has_error
        assert result.error_message == "Hold not found"

    def test_skipped_factory(self):
        result = ProcessingResult.skipped(HoldRecord("G1", "PROD", "H01"))
        assert result.status is ProcessingStatus.SKIPPED
        assert not result.is_success
        assert not result.has_error


@pytest.mark.unit
class TestRecordProtocol:

    @pytest.mark.parametrize("record", [
        HoldRecord("G1", "PROD", "H01"),
        DiscardRecord("G1", "PROD", "LOC1"),
    ])
    def test_both_record_kinds_satisfy_protocol(self, record):
        assert isinstance(record, Record)

    def test_unrelated_object_does_not(self):
        assert not isinstance(object(), Record)
