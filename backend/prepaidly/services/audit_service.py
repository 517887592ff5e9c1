"""Append-only audit trail for schedule actions.

Rows are inserted only.  Recording is best-effort: a database failure is
logged and does not abort the action being audited.
"""

import enum
import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from prepaidly.auth_utils import Principal
from prepaidly.models.schedule import AuditActionType, ScheduleAudit

logger = logging.getLogger(__name__)

ACTION_LABELS = {
    AuditActionType.CREATED: "Schedule Created",
    AuditActionType.UPDATED: "Schedule Updated",
    AuditActionType.GENERATED: "Schedule Generated",
    AuditActionType.DOWNLOADED: "Schedule Downloaded",
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _snapshot(values: dict[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    return {k: _jsonable(v) for k, v in values.items()}


async def record_audit_entry(
    db: AsyncSession,
    *,
    schedule_id: int,
    entity_id: str,
    action_type: AuditActionType,
    details: str,
    principal: Principal | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
) -> ScheduleAudit | None:
    """Insert one audit row.  Returns None if the write failed."""
    action_type = AuditActionType(action_type)
    entry = ScheduleAudit(
        schedule_id=schedule_id,
        entity_id=entity_id,
        action=ACTION_LABELS[action_type],
        action_type=action_type,
        details=details,
        user_id=principal.user_id if principal else None,
        user_name=principal.display_name if principal else None,
        user_email=principal.email if principal else None,
        old_values=_snapshot(old_values),
        new_values=_snapshot(new_values),
    )
    try:
        async with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError as e:
        logger.error(
            "Failed to record %s audit entry for schedule %s: %s",
            action_type.value, schedule_id, e,
        )
        return None

    logger.info("Audit %s recorded for schedule %s", action_type.value, schedule_id)
    return entry


async def list_audit_entries(db: AsyncSession, schedule_id: int) -> list[ScheduleAudit]:
    """Audit trail for a schedule, newest first."""
    result = await db.execute(
        select(ScheduleAudit)
        .where(ScheduleAudit.schedule_id == schedule_id)
        .order_by(ScheduleAudit.created_at.desc(), ScheduleAudit.id.desc())
    )
    return list(result.scalars().all())
