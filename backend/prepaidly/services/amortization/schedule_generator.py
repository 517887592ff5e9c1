"""Straight-line amortization schedule generator.

Partitions a total amount across every calendar month touched by a service
period.  Three allocation policies are supported:

- ``equal_monthly``: every month receives the same share
- ``daily_proration``: partial months are prorated at a daily rate and the
  full months split what is left equally
- ``days_weighted``: every month is weighted by its days of service

Whatever the policy, amounts are rounded half-up to the cent and the final
month receives the true residual, so the entries always sum to the total
exactly.  The generator is pure: no I/O, no shared state.
"""

import calendar
import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


class AllocationPolicy(str, enum.Enum):
    EQUAL_MONTHLY = "equal_monthly"
    DAILY_PRORATION = "daily_proration"
    DAYS_WEIGHTED = "days_weighted"


class ScheduleValidationError(ValueError):
    """Schedule inputs rejected before any entry is generated."""


class InvalidRangeError(ScheduleValidationError):
    """Service start after service end, or no month covered."""


class InvalidAmountError(ScheduleValidationError):
    """Total amount is not a positive decimal."""


@dataclass(frozen=True)
class ScheduleEntry:
    """One month of a schedule."""

    period: date
    amount: Decimal
    cumulative: Decimal
    remaining: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.isoformat(),
            "amount": self.amount,
            "cumulative": self.cumulative,
            "remaining": self.remaining,
        }


@dataclass(frozen=True)
class _MonthSpan:
    period: date
    overlap_days: int
    days_in_month: int

    @property
    def is_full(self) -> bool:
        return self.overlap_days == self.days_in_month


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------

def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_date(value: Any, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            raise InvalidRangeError(f"{label} is not a valid ISO date: {value!r}")
    raise InvalidRangeError(f"{label} must be a date, got {type(value).__name__}")


def _to_amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmountError(f"Total amount is not a number: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"Total amount is not a number: {value!r}")
    if not amount.is_finite():
        raise InvalidAmountError(f"Total amount must be finite, got {value!r}")
    if amount <= 0:
        raise InvalidAmountError("Total amount must be greater than zero")
    return amount


def _month_spans(start: date, end: date) -> list[_MonthSpan]:
    """Every month from the month of *start* through the month of *end*."""
    spans = []
    period = start.replace(day=1)
    last_period = end.replace(day=1)
    while period <= last_period:
        days_in_month = calendar.monthrange(period.year, period.month)[1]
        month_end = period.replace(day=days_in_month)
        overlap = (min(end, month_end) - max(start, period)).days + 1
        spans.append(_MonthSpan(period, overlap, days_in_month))
        period += relativedelta(months=1)
    return spans


# ---------------------------------------------------------------------------
# Allocation policies
#
# Each returns one rounded share per month.  _build_entries caps every share
# at what is still unallocated and replaces the last one with the residual.
# ---------------------------------------------------------------------------

def _equal_monthly(spans: list[_MonthSpan], total: Decimal) -> list[Decimal]:
    monthly = _round(total / len(spans))
    return [monthly] * len(spans)


def _daily_proration(spans: list[_MonthSpan], total: Decimal) -> list[Decimal]:
    total_days = sum(s.overlap_days for s in spans)
    daily_rate = total / total_days

    partial = {
        i: _round(daily_rate * s.overlap_days)
        for i, s in enumerate(spans)
        if not s.is_full
    }
    full_count = len(spans) - len(partial)
    full_amount = ZERO
    if full_count:
        remainder = total - sum(partial.values(), ZERO)
        full_amount = _round(remainder / full_count)

    return [partial.get(i, full_amount) for i in range(len(spans))]


def _days_weighted(spans: list[_MonthSpan], total: Decimal) -> list[Decimal]:
    total_days = sum(s.overlap_days for s in spans)
    return [_round(total * s.overlap_days / total_days) for s in spans]


_POLICIES = {
    AllocationPolicy.EQUAL_MONTHLY: _equal_monthly,
    AllocationPolicy.DAILY_PRORATION: _daily_proration,
    AllocationPolicy.DAYS_WEIGHTED: _days_weighted,
}


def _build_entries(
    spans: list[_MonthSpan], shares: list[Decimal], total: Decimal
) -> list[ScheduleEntry]:
    entries = []
    cumulative = ZERO
    last = len(spans) - 1
    for index, (span, share) in enumerate(zip(spans, shares)):
        unallocated = total - cumulative
        amount = unallocated if index == last else min(share, unallocated)
        cumulative += amount
        entries.append(ScheduleEntry(
            period=span.period,
            amount=amount,
            cumulative=cumulative,
            remaining=total - cumulative,
        ))
    return entries


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def generate_schedule(
    service_start: date,
    service_end: date,
    total_amount: Decimal,
    policy: AllocationPolicy | str = AllocationPolicy.EQUAL_MONTHLY,
    *,
    max_months: int | None = None,
) -> list[ScheduleEntry]:
    """Generate the monthly amortization entries for a service period.

    Parameters
    ----------
    service_start, service_end : date
        Inclusive service range.  ``datetime`` values are truncated to their
        date and ISO strings are parsed.
    total_amount : Decimal
        Positive amount to spread.  Floats are read through ``str`` so that
        ``0.1`` stays ``Decimal("0.1")``.
    policy : AllocationPolicy
        How the amount is split across months.
    max_months : int, optional
        Reject ranges covering more months than this.

    Raises
    ------
    InvalidRangeError
        Start after end, no month covered, or more than *max_months* months.
    InvalidAmountError
        Total is zero, negative or not a number.
    """
    start = _to_date(service_start, "Service start")
    end = _to_date(service_end, "Service end")
    if start > end:
        raise InvalidRangeError(
            "Service start date must be before or equal to service end date"
        )
    total = _to_amount(total_amount)
    policy = AllocationPolicy(policy)

    spans = _month_spans(start, end)
    if not spans:
        raise InvalidRangeError("Invalid date range: no months covered")
    if max_months is not None and len(spans) > max_months:
        raise InvalidRangeError(
            f"Service period covers {len(spans)} months, maximum is {max_months}"
        )

    shares = _POLICIES[policy](spans, total)
    entries = _build_entries(spans, shares, total)

    logger.debug(
        "Generated %d %s entries for %s..%s total %s",
        len(entries), policy.value, start, end, total,
    )
    return entries


def is_valid_schedule_request(
    service_start: Any, service_end: Any, total_amount: Any
) -> bool:
    """True when :func:`generate_schedule` would accept these inputs."""
    try:
        start = _to_date(service_start, "Service start")
        end = _to_date(service_end, "Service end")
        _to_amount(total_amount)
    except ScheduleValidationError:
        return False
    return start <= end


def schedule_totals(entries: Iterable[ScheduleEntry]) -> dict[str, Any]:
    """Summary figures for a generated schedule."""
    entries = list(entries)
    if not entries:
        return {"period_count": 0, "first_period": None, "last_period": None, "total": ZERO}
    return {
        "period_count": len(entries),
        "first_period": entries[0].period,
        "last_period": entries[-1].period,
        "total": entries[-1].cumulative,
    }
