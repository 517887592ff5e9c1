"""Schedule export service.

Renders a generated schedule as:
- CSV, with descriptive ``#`` comment lines above the header row
- JSON, wrapped in an envelope with export metadata

Rendering is pure; the API layer records the download in the audit trail.
"""

import csv
import io
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable

from prepaidly.config import settings
from prepaidly.models.schedule import ScheduleType
from prepaidly.services.amortization.schedule_generator import ScheduleEntry

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["Period", "Monthly Amount", "Cumulative", "Remaining"]

_SCHEDULE_TITLES = {
    ScheduleType.PREPAYMENT: "Prepayment Schedule",
    ScheduleType.UNEARNED: "Unearned Revenue Schedule",
}


class ExportError(Exception):
    """Schedule export error."""


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that keeps Decimal amounts exact and dates ISO."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return f"{obj:.2f}"
        if isinstance(obj, date):
            return obj.isoformat()
        return super().default(obj)


@dataclass(frozen=True)
class ScheduleMeta:
    """Descriptive fields printed above an exported schedule."""

    schedule_type: ScheduleType
    vendor: str
    invoice_date: date
    total_amount: Decimal
    service_start: date
    service_end: date
    description: str | None = None
    reference_number: str | None = None

    @classmethod
    def from_schedule(cls, schedule) -> "ScheduleMeta":
        return cls(
            schedule_type=schedule.schedule_type,
            vendor=schedule.vendor,
            invoice_date=schedule.invoice_date,
            total_amount=schedule.total_amount,
            service_start=schedule.service_start,
            service_end=schedule.service_end,
            description=schedule.description,
            reference_number=schedule.reference_number,
        )


def _header_text(value: str) -> str:
    """Keep free text on its own comment line."""
    return re.sub(r"\s*[\r\n]+\s*", " ", value).strip()


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


# ---------------------------------------------------------------------------
# Format renderers
# ---------------------------------------------------------------------------

def render_schedule_csv(entries: Iterable[ScheduleEntry], meta: ScheduleMeta) -> bytes:
    """Render entries as CSV bytes, one row per period."""
    output = io.StringIO()
    header_lines = [
        f"# {_SCHEDULE_TITLES[ScheduleType(meta.schedule_type)]}",
        f"# Vendor: {_header_text(meta.vendor)}",
        f"# Invoice Date: {meta.invoice_date.isoformat()}",
        f"# Total Amount: {settings.currency_symbol}{_money(meta.total_amount)}",
        f"# Service Period: {meta.service_start.isoformat()} to {meta.service_end.isoformat()}",
    ]
    if meta.description:
        header_lines.append(f"# Description: {_header_text(meta.description)}")
    output.write("\n".join(header_lines))
    output.write("\n\n")

    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for entry in entries:
        writer.writerow([
            entry.period.isoformat(),
            _money(entry.amount),
            _money(entry.cumulative),
            _money(entry.remaining),
        ])
    return output.getvalue().encode("utf-8")


def render_schedule_json(entries: Iterable[ScheduleEntry], meta: ScheduleMeta) -> bytes:
    """Render entries as JSON with a metadata envelope."""
    data = [entry.to_dict() for entry in entries]
    envelope = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "record_count": len(data),
        "metadata": {
            "schedule_type": ScheduleType(meta.schedule_type).value,
            "vendor": meta.vendor,
            "invoice_date": meta.invoice_date,
            "total_amount": meta.total_amount,
            "service_start": meta.service_start,
            "service_end": meta.service_end,
            "description": meta.description,
            "reference_number": meta.reference_number,
        },
        "data": data,
    }
    return json.dumps(envelope, cls=DecimalEncoder, indent=2).encode("utf-8")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

EXPORTERS = {
    "csv": render_schedule_csv,
    "json": render_schedule_json,
}


def export_schedule(
    entries: Iterable[ScheduleEntry],
    meta: ScheduleMeta,
    format: str = "csv",
) -> bytes:
    """Export a schedule in the requested format."""
    fmt = format.lower()
    if fmt not in EXPORTERS:
        raise ExportError(f"Unsupported format: {fmt}. Supported: {list(EXPORTERS.keys())}")
    entries = list(entries)
    result = EXPORTERS[fmt](entries, meta)
    logger.info("Exported %d schedule rows as %s for %s", len(entries), fmt, meta.vendor)
    return result


def schedule_filename(vendor: str, invoice_date: date, format: str = "csv") -> str:
    """``schedule-<vendor-slug>-<invoice-date>.<ext>``"""
    slug = re.sub(r"\s+", "-", vendor.strip()).lower()
    slug = re.sub(r"[^a-z0-9._-]", "", slug) or "schedule"
    return f"schedule-{slug}-{invoice_date.isoformat()}{get_file_extension(format)}"


def get_content_type(format: str) -> str:
    """Return the MIME content type for a format."""
    return {
        "csv": "text/csv",
        "json": "application/json",
    }.get(format.lower(), "application/octet-stream")


def get_file_extension(format: str) -> str:
    """Return the file extension for a format."""
    return {
        "csv": ".csv",
        "json": ".json",
    }.get(format.lower(), ".dat")
