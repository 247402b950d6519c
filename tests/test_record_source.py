"""
Unit tests for the CSV record source
"""
import asyncio
from datetime import datetime

import pytest

from config import ProcessingMode
from record_source import LAYOUT_LEGACY, LAYOUT_NAMED, RecordSource, SchemaError, looks_like_header
from records import DiscardRecord, HoldRecord


def parse(path, mode=ProcessingMode.HOLD):
    source = RecordSource(mode)
    records = asyncio.run(source.parse(path))
    return source, records


@pytest.mark.unit
class TestHeaderDetection:

    def test_named_header(self):
        assert looks_like_header(["DNTNO", "HDATE", "HTIME", "PRDCD", "RSHLD"])

    def test_data_row_is_not_header(self):
        assert not looks_like_header(["G0956250001234A", "PROD", "H01"])

    def test_numeric_cell_is_not_header(self):
        assert not looks_like_header(["DNTNO", "20240813"])

    def test_empty_cell_is_not_header(self):
        assert not looks_like_header(["DNTNO", ""])


@pytest.mark.unit
class TestHoldParsing:

    def test_named_header_scenario(self, write_csv):
        path = write_csv("holds.csv", [
            "DNTNO,HDATE,HTIME,PRDCD,RSHLD",
            "G0956250001234A,20240813,142724591,PROD,H01",
        ])
        source, records = parse(path)

        assert records == [HoldRecord(
            donation_number="G0956250001234A",
            product_code="PROD",
            hold_code="H01",
            placed_at=datetime(2024, 8, 13, 14, 27, 24, 591000),
        )]
        assert source.stats.header_detected
        assert source.stats.layout == LAYOUT_NAMED
        assert source.stats.valid == 1
        assert source.stats.invalid == 0

    def test_named_header_is_case_insensitive_and_reordered(self, write_csv):
        path = write_csv("holds.csv", [
            "rshld,prdcd,dntno,htime,hdate,extra",
            "H01,PROD,G0956250001234A,000000,20240813,ignored",
        ])
        _, records = parse(path)
        assert records == [HoldRecord("G0956250001234A", "PROD", "H01", datetime(2024, 8, 13))]

    def test_legacy_three_column_header(self, write_csv):
        path = write_csv("legacy.csv", [
            "DonationNumber,ProductCode,HoldCode",
            "G0956250001234A,PROD,H01",
            "G0956250001235B,GIFT,SUS",
        ])
        source, records = parse(path)
        assert [r.key() for r in records] == ["G0956250001234A|PROD|H01", "G0956250001235B|GIFT|SUS"]
        assert all(r.placed_at is None for r in records)
        assert source.stats.layout == LAYOUT_LEGACY

    def test_headerless_file_keeps_first_line(self, write_csv):
        path = write_csv("plain.csv", ["G0956250001234A,PROD,H01", "G0956250001235B,PROD,H02"])
        source, records = parse(path)
        assert len(records) == 2
        assert not source.stats.header_detected

    def test_bad_lines_are_counted_and_skipped(self, write_csv):
        path = write_csv("mixed.csv", [
            "G0956250001234A,PROD,H01",
            "G0956250001235B,PROD",
            "G0956250001236C,PRO,H01",
            ",PROD,H01",
            "G0956250001237D,PROD,H",
            "G0956250001238E,PROD,H02",
        ])
        source, records = parse(path)
        assert [r.donation_number for r in records] == ["G0956250001234A", "G0956250001238E"]
        assert source.stats.valid == 2
        assert source.stats.invalid == 4

    def test_quoted_field_with_embedded_comma(self, write_csv):
        path = write_csv("quoted.csv", ['G0956250001234A,"PROD","H,1"'])
        _, records = parse(path)
        assert records == [HoldRecord("G0956250001234A", "PROD", "H,1")]

    def test_blank_lines_are_ignored(self, write_csv):
        path = write_csv("blank.csv", ["", "DNTNO,HDATE,HTIME,PRDCD,RSHLD", "", "G1,20240813,142724591,PROD,H01", "   "])
        source, records = parse(path)
        assert len(records) == 1
        assert source.stats.invalid == 0

    def test_malformed_date_keeps_record_without_timestamp(self, write_csv):
        path = write_csv("dates.csv", [
            "DNTNO,HDATE,HTIME,PRDCD,RSHLD",
            "G0956250001234A,2024081,142724591,PROD,H01",
        ])
        _, records = parse(path)
        assert len(records) == 1
        assert records[0].placed_at is None

    def test_missing_required_columns_is_fatal(self, write_csv):
        path = write_csv("bad_header.csv", [
            "DNTNO,HDATE,PRDCD,RSHLD",
            "G0956250001234A,20240813,PROD,H01",
        ])
        with pytest.raises(SchemaError, match="HTIME"):
            parse(path)

    def test_empty_file(self, write_csv, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")
        source, records = parse(str(path))
        assert records == []
        assert source.stats.valid == 0

    def test_missing_file_raises_os_error(self, tmp_path):
        with pytest.raises(OSError):
            parse(str(tmp_path / "nope.csv"))


@pytest.mark.unit
class TestDiscardParsing:

    def test_named_header_with_optional_columns(self, write_csv):
        path = write_csv("discards.csv", [
            "DNTNO,PRDCD,LOCCD,HDATE,HTIME,RSHLD",
            "G0956250001234A,PROD,LOC1,20240813,142724591,H01",
            "G0956250001235B,PROD,LOC2,,,",
        ])
        _, records = parse(path, ProcessingMode.DISCARD)
        assert records == [
            DiscardRecord("G0956250001234A", "PROD", "LOC1", datetime(2024, 8, 13, 14, 27, 24, 591000), "H01"),
            DiscardRecord("G0956250001235B", "PROD", "LOC2", None, None),
        ]

    def test_required_columns_only(self, write_csv):
        path = write_csv("discards.csv", ["DNTNO,PRDCD,LOCCD", "G1,PROD,LOC1"])
        source, records = parse(path, ProcessingMode.DISCARD)
        assert records == [DiscardRecord("G1", "PROD", "LOC1")]
        assert source.stats.layout == LAYOUT_NAMED

    def test_legacy_headerless(self, write_csv):
        path = write_csv("discards.csv", ["G1,PROD,LOC1", "G2,PROD,"])
        source, records = parse(path, ProcessingMode.DISCARD)
        assert records == [DiscardRecord("G1", "PROD", "LOC1")]
        assert source.stats.invalid == 1

    def test_missing_location_column_is_fatal(self, write_csv):
        path = write_csv("discards.csv", ["DNTNO,PRDCD,HDATE,HTIME", "G1,PROD,20240813,142724"])
        with pytest.raises(SchemaError, match="LOCCD"):
            parse(path, ProcessingMode.DISCARD)
