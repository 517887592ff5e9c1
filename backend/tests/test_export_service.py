"""Tests for schedule export rendering and download filenames."""

import json
import pytest
from decimal import Decimal
from datetime import date
from types import SimpleNamespace

from prepaidly.models.schedule import ScheduleType
from prepaidly.services.amortization.schedule_generator import generate_schedule
from prepaidly.services.export_service import (
    CSV_COLUMNS,
    ExportError,
    ScheduleMeta,
    export_schedule,
    get_content_type,
    get_file_extension,
    render_schedule_csv,
    render_schedule_json,
    schedule_filename,
)


def _meta(**overrides):
    values = dict(
        schedule_type=ScheduleType.PREPAYMENT,
        vendor="Acme Insurance",
        invoice_date=date(2024, 1, 5),
        total_amount=Decimal("100"),
        service_start=date(2024, 1, 1),
        service_end=date(2024, 3, 31),
    )
    values.update(overrides)
    return ScheduleMeta(**values)


@pytest.fixture
def entries():
    return generate_schedule(date(2024, 1, 1), date(2024, 3, 31), Decimal("100"))


class TestCsvExport:

    def test_full_document(self, entries):
        text = render_schedule_csv(entries, _meta()).decode("utf-8")
        assert text == (
            "# Prepayment Schedule\n"
            "# Vendor: Acme Insurance\n"
            "# Invoice Date: 2024-01-05\n"
            "# Total Amount: $100.00\n"
            "# Service Period: 2024-01-01 to 2024-03-31\n"
            "\n"
            "Period,Monthly Amount,Cumulative,Remaining\n"
            "2024-01-01,33.33,33.33,66.67\n"
            "2024-02-01,33.33,66.66,33.34\n"
            "2024-03-01,33.34,100.00,0.00\n"
        )

    def test_unearned_title_and_description(self, entries):
        meta = _meta(schedule_type=ScheduleType.UNEARNED, description="Annual support")
        lines = render_schedule_csv(entries, meta).decode("utf-8").split("\n")
        assert lines[0] == "# Unearned Revenue Schedule"
        assert lines[5] == "# Description: Annual support"
        assert lines[6] == ""
        assert lines[7] == ",".join(CSV_COLUMNS)

    def test_schedule_type_as_plain_string(self, entries):
        text = render_schedule_csv(entries, _meta(schedule_type="unearned")).decode("utf-8")
        assert text.startswith("# Unearned Revenue Schedule\n")

    def test_vendor_with_comma_in_header_is_verbatim(self, entries):
        text = render_schedule_csv(entries, _meta(vendor="Smith, Jones & Co")).decode("utf-8")
        assert "# Vendor: Smith, Jones & Co\n" in text

    def test_multiline_text_stays_in_header_block(self, entries):
        meta = _meta(vendor="Acme\r\nHoldings", description="line one\nline two\n\nline three")
        text = render_schedule_csv(entries, meta).decode("utf-8")
        header_block = text.split("\n\n", 1)[0].split("\n")
        assert all(line.startswith("# ") for line in header_block)
        assert "# Vendor: Acme Holdings" in header_block
        assert "# Description: line one line two line three" in header_block
        assert text.split("\n\n", 1)[1].startswith("Period,Monthly Amount")

    def test_one_row_per_entry(self):
        many = generate_schedule(date(2024, 1, 1), date(2024, 12, 31), Decimal("1200"))
        text = render_schedule_csv(many, _meta()).decode("utf-8")
        data_rows = [ln for ln in text.splitlines() if ln[:4].isdigit()]
        assert len(data_rows) == 12


class TestJsonExport:

    def test_envelope(self, entries):
        payload = json.loads(render_schedule_json(entries, _meta(reference_number="INV-7")))
        assert payload["record_count"] == 3
        assert "exported_at" in payload
        assert payload["metadata"]["schedule_type"] == "prepayment"
        assert payload["metadata"]["reference_number"] == "INV-7"
        assert payload["metadata"]["total_amount"] == "100.00"
        assert payload["metadata"]["service_end"] == "2024-03-31"
        assert payload["data"][-1] == {
            "period": "2024-03-01",
            "amount": "33.34",
            "cumulative": "100.00",
            "remaining": "0.00",
        }


class TestExportDispatch:

    def test_csv_and_json(self, entries):
        assert export_schedule(entries, _meta(), "csv").startswith(b"# Prepayment Schedule")
        assert json.loads(export_schedule(entries, _meta(), "JSON"))["record_count"] == 3

    def test_unsupported_format(self, entries):
        with pytest.raises(ExportError, match="Unsupported format"):
            export_schedule(entries, _meta(), "xlsx")

    def test_content_types(self):
        assert get_content_type("csv") == "text/csv"
        assert get_content_type("json") == "application/json"
        assert get_content_type("pdf") == "application/octet-stream"
        assert get_file_extension("csv") == ".csv"
        assert get_file_extension("json") == ".json"


class TestFilename:

    def test_slugged_vendor(self):
        assert schedule_filename("Acme Insurance", date(2024, 1, 5)) == (
            "schedule-acme-insurance-2024-01-05.csv"
        )

    def test_punctuation_dropped(self):
        assert schedule_filename("Smith, Jones & Co.", date(2024, 1, 5), "json") == (
            "schedule-smith-jones--co.-2024-01-05.json"
        )

    def test_empty_slug_falls_back(self):
        assert schedule_filename("!!!", date(2024, 1, 5)) == "schedule-schedule-2024-01-05.csv"


class TestScheduleMeta:

    def test_from_schedule(self):
        schedule = SimpleNamespace(
            schedule_type=ScheduleType.UNEARNED,
            vendor="Globex",
            invoice_date=date(2024, 6, 1),
            total_amount=Decimal("500.00"),
            service_start=date(2024, 6, 1),
            service_end=date(2025, 5, 31),
            description=None,
            reference_number="SO-1",
        )
        meta = ScheduleMeta.from_schedule(schedule)
        assert meta.vendor == "Globex"
        assert meta.reference_number == "SO-1"
        assert meta.description is None
