"""Schedule register service.

Persists amortization schedules with their generated entries and records
every change in the audit trail.  Entries are always produced server-side
by the schedule generator; callers never supply amounts per period.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from prepaidly.auth_utils import Principal
from prepaidly.config import settings
from prepaidly.models.schedule import (
    AmortizationSchedule,
    AuditActionType,
    ScheduleLine,
    ScheduleType,
)
from prepaidly.services.amortization.schedule_generator import (
    AllocationPolicy,
    ScheduleEntry,
    generate_schedule,
)
from prepaidly.services.audit_service import record_audit_entry

logger = logging.getLogger(__name__)

# Fields compared when describing an update, with their audit labels
_TRACKED_FIELDS = {
    "schedule_type": "Type",
    "vendor": "Contact",
    "invoice_date": "Invoice date",
    "total_amount": "Amount",
    "service_start": "Service start",
    "service_end": "Service end",
    "reference_number": "Reference",
    "description": "Description",
    "allocation_policy": "Policy",
}


class ScheduleNotFoundError(Exception):
    """Schedule does not exist."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _generate(
    service_start: date,
    service_end: date,
    total_amount: Decimal,
    policy: AllocationPolicy | None,
) -> list[ScheduleEntry]:
    return generate_schedule(
        service_start,
        service_end,
        total_amount,
        policy or settings.default_allocation_policy,
        max_months=settings.max_schedule_months,
    )


def _display(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _snapshot(schedule: AmortizationSchedule) -> dict[str, Any]:
    return {name: getattr(schedule, name) for name in _TRACKED_FIELDS}


def describe_changes(old: dict[str, Any], new: dict[str, Any]) -> str:
    """Human-readable summary of what an update changed."""
    changes = []
    for name, label in _TRACKED_FIELDS.items():
        before, after = old.get(name), new.get(name)
        if isinstance(before, Decimal) or isinstance(after, Decimal):
            differs = Decimal(str(before or 0)) != Decimal(str(after or 0))
        else:
            differs = _display(before) != _display(after)
        if not differs:
            continue
        if name in ("vendor", "reference_number", "description"):
            changes.append(f'{label}: "{_display(before)}" → "{_display(after)}"')
        else:
            changes.append(f"{label}: {_display(before)} → {_display(after)}")
    if not changes:
        return "Schedule regenerated with same values"
    return f"Schedule updated with changes: {', '.join(changes)}"


def entry_from_line(line: ScheduleLine) -> ScheduleEntry:
    return ScheduleEntry(
        period=line.period,
        amount=line.amount,
        cumulative=line.cumulative,
        remaining=line.remaining,
    )


def replace_entries(schedule: AmortizationSchedule, entries: list[ScheduleEntry]) -> None:
    """Swap the persisted lines of *schedule* for *entries*."""
    schedule.entries.clear()
    schedule.entries.extend(
        ScheduleLine(
            period=e.period,
            amount=e.amount,
            cumulative=e.cumulative,
            remaining=e.remaining,
        )
        for e in entries
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def create_schedule(
    db: AsyncSession,
    *,
    entity_id: str,
    schedule_type: ScheduleType,
    vendor: str,
    invoice_date: date,
    total_amount: Decimal,
    service_start: date,
    service_end: date,
    reference_number: str,
    description: str | None = None,
    allocation_policy: AllocationPolicy | None = None,
    principal: Principal | None = None,
) -> AmortizationSchedule:
    """Generate and persist a new schedule.

    Raises ``ScheduleValidationError`` before anything is written when the
    dates or amount are rejected by the generator.
    """
    policy = AllocationPolicy(allocation_policy or settings.default_allocation_policy)
    entries = _generate(service_start, service_end, total_amount, policy)

    schedule = AmortizationSchedule(
        entity_id=entity_id,
        created_by=principal.user_id if principal else None,
        schedule_type=ScheduleType(schedule_type),
        vendor=vendor,
        invoice_date=invoice_date,
        total_amount=total_amount,
        service_start=service_start,
        service_end=service_end,
        description=description,
        reference_number=reference_number,
        allocation_policy=policy,
    )
    replace_entries(schedule, entries)
    db.add(schedule)
    await db.flush()

    await record_audit_entry(
        db,
        schedule_id=schedule.id,
        entity_id=entity_id,
        action_type=AuditActionType.CREATED,
        details=(
            f"{schedule.schedule_type.label} schedule created for {vendor} "
            f"with total amount {total_amount}"
        ),
        principal=principal,
        new_values=_snapshot(schedule),
    )
    logger.info(
        "Created schedule %s for entity %s: %d periods, total %s",
        schedule.id, entity_id, len(entries), total_amount,
    )
    return schedule


async def get_schedule(db: AsyncSession, schedule_id: int) -> AmortizationSchedule:
    result = await db.execute(
        select(AmortizationSchedule)
        .options(selectinload(AmortizationSchedule.entries))
        .where(AmortizationSchedule.id == schedule_id)
    )
    schedule = result.scalar_one_or_none()
    if schedule is None:
        raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
    return schedule


async def list_schedules(
    db: AsyncSession,
    entity_ids: list[str] | None,
    *,
    schedule_type: ScheduleType | None = None,
) -> list[AmortizationSchedule]:
    """Schedules of the given entities, newest first.

    ``entity_ids=None`` means no entity restriction.
    """
    q = select(AmortizationSchedule).order_by(
        AmortizationSchedule.created_at.desc(), AmortizationSchedule.id.desc()
    )
    if entity_ids is not None:
        q = q.where(AmortizationSchedule.entity_id.in_(entity_ids))
    if schedule_type:
        q = q.where(AmortizationSchedule.schedule_type == schedule_type)
    result = await db.execute(q)
    return list(result.scalars().all())


async def update_schedule(
    db: AsyncSession,
    schedule: AmortizationSchedule,
    changes: dict[str, Any],
    *,
    principal: Principal | None = None,
) -> AmortizationSchedule:
    """Apply field *changes* and regenerate the entries.

    The new dates/amount are validated by generating first, so a rejected
    update leaves the schedule untouched.
    """
    unknown = set(changes) - set(_TRACKED_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")

    old_values = _snapshot(schedule)
    merged = {**old_values, **changes}
    merged["schedule_type"] = ScheduleType(merged["schedule_type"])
    policy = AllocationPolicy(merged["allocation_policy"] or settings.default_allocation_policy)
    merged["allocation_policy"] = policy
    entries = _generate(
        merged["service_start"], merged["service_end"], merged["total_amount"], policy
    )

    for name, value in merged.items():
        setattr(schedule, name, value)
    replace_entries(schedule, entries)
    await db.flush()

    await record_audit_entry(
        db,
        schedule_id=schedule.id,
        entity_id=schedule.entity_id,
        action_type=AuditActionType.UPDATED,
        details=describe_changes(old_values, merged),
        principal=principal,
        old_values=old_values,
        new_values=_snapshot(schedule),
    )
    logger.info("Updated schedule %s: %d periods", schedule.id, len(entries))
    return schedule


async def regenerate_schedule(
    db: AsyncSession,
    schedule: AmortizationSchedule,
    *,
    policy: AllocationPolicy | None = None,
    principal: Principal | None = None,
) -> AmortizationSchedule:
    """Recompute the entries from the stored dates and amount."""
    previous_policy = schedule.allocation_policy
    new_policy = AllocationPolicy(policy or previous_policy or settings.default_allocation_policy)
    entries = _generate(
        schedule.service_start, schedule.service_end, schedule.total_amount, new_policy
    )
    schedule.allocation_policy = new_policy
    replace_entries(schedule, entries)
    await db.flush()

    details = f"Schedule regenerated with {new_policy.value} allocation ({len(entries)} periods)"
    if previous_policy and previous_policy != new_policy:
        details += f", previously {AllocationPolicy(previous_policy).value}"
    await record_audit_entry(
        db,
        schedule_id=schedule.id,
        entity_id=schedule.entity_id,
        action_type=AuditActionType.GENERATED,
        details=details,
        principal=principal,
        old_values={"allocation_policy": previous_policy},
        new_values={"allocation_policy": new_policy},
    )
    logger.info("Regenerated schedule %s with %s", schedule.id, new_policy.value)
    return schedule


def schedule_entries(schedule: AmortizationSchedule) -> list[ScheduleEntry]:
    """Persisted lines of *schedule* as generator entries, ascending."""
    return [entry_from_line(line) for line in sorted(schedule.entries, key=lambda ln: ln.period)]
