"""Schedule register API endpoints.

Covers schedule preview, creation, update/regeneration, export and the
audit trail.  Every schedule belongs to an entity; callers only see the
schedules of entities listed on their access token.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from prepaidly.auth_utils import (
    Principal,
    ROLE_ADMIN,
    ROLE_USER,
    ensure_entity_access,
    get_current_principal,
    require_entity_role,
)
from prepaidly.config import settings
from prepaidly.database import get_db
from prepaidly.models.schedule import AmortizationSchedule, AuditActionType, ScheduleType
from prepaidly.schemas import (
    ExportFormat,
    RegenerateRequest,
    ScheduleAuditResponse,
    ScheduleCreateRequest,
    ScheduleDetailResponse,
    SchedulePreviewRequest,
    SchedulePreviewResponse,
    ScheduleSummaryResponse,
    ScheduleUpdateRequest,
)
from prepaidly.services import audit_service, export_service, schedule_service
from prepaidly.services.amortization.schedule_generator import (
    ScheduleValidationError,
    generate_schedule,
    schedule_totals,
)
from prepaidly.services.error_logger import log_error

logger = logging.getLogger(__name__)
router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


def _validation_error(e: ScheduleValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


async def _load_accessible(
    db: AsyncSession, schedule_id: int, principal: Principal
) -> AmortizationSchedule:
    """Fetch a schedule, answering 404 when missing or not accessible."""
    try:
        schedule = await schedule_service.get_schedule(db, schedule_id)
    except schedule_service.ScheduleNotFoundError:
        raise HTTPException(status_code=404, detail="Schedule not found")
    ensure_entity_access(principal, schedule.entity_id)
    return schedule


# ===================================================================
# Preview
# ===================================================================

@router.post("/preview", response_model=SchedulePreviewResponse)
@limiter.limit("120/minute")
async def preview_schedule(
    data: SchedulePreviewRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    """Generate entries without saving anything."""
    policy = data.allocation_policy or settings.default_allocation_policy
    try:
        entries = generate_schedule(
            data.service_start,
            data.service_end,
            data.total_amount,
            policy,
            max_months=settings.max_schedule_months,
        )
    except ScheduleValidationError as e:
        raise _validation_error(e)

    totals = schedule_totals(entries)
    return SchedulePreviewResponse(
        allocation_policy=policy,
        period_count=totals["period_count"],
        first_period=totals["first_period"],
        last_period=totals["last_period"],
        total=totals["total"],
        entries=[e.to_dict() for e in entries],
    )


# ===================================================================
# Register
# ===================================================================

@router.post("", response_model=ScheduleDetailResponse, status_code=201)
async def create_schedule(
    data: ScheduleCreateRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    require_entity_role(principal, data.entity_id, ROLE_ADMIN, ROLE_USER)
    try:
        schedule = await schedule_service.create_schedule(
            db, **data.model_dump(), principal=principal
        )
    except ScheduleValidationError as e:
        raise _validation_error(e)
    except Exception as e:
        await log_error(e, db=db, module="api.schedules", function_name="create_schedule",
                        user_id=principal.user_id, entity_id=data.entity_id)
        raise
    return schedule


@router.get("", response_model=list[ScheduleSummaryResponse])
async def list_schedules(
    entity_id: Optional[str] = Query(None),
    schedule_type: Optional[ScheduleType] = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Schedules of the caller's entities, newest first."""
    if entity_id is not None:
        ensure_entity_access(
            principal, entity_id,
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to specified entity",
        )
        entity_ids = [entity_id]
    elif principal.is_super_admin:
        entity_ids = None
    else:
        entity_ids = list(principal.entities)
    return await schedule_service.list_schedules(db, entity_ids, schedule_type=schedule_type)


@router.get("/{schedule_id}", response_model=ScheduleDetailResponse)
async def get_schedule(
    schedule_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return await _load_accessible(db, schedule_id, principal)


@router.put("/{schedule_id}", response_model=ScheduleDetailResponse)
async def update_schedule(
    schedule_id: int,
    data: ScheduleUpdateRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Update schedule fields and regenerate its entries."""
    schedule = await _load_accessible(db, schedule_id, principal)
    try:
        return await schedule_service.update_schedule(
            db, schedule, data.changes(), principal=principal
        )
    except ScheduleValidationError as e:
        raise _validation_error(e)
    except Exception as e:
        await log_error(e, db=db, module="api.schedules", function_name="update_schedule",
                        user_id=principal.user_id, entity_id=schedule.entity_id)
        raise


@router.post("/{schedule_id}/regenerate", response_model=ScheduleDetailResponse)
async def regenerate_schedule(
    schedule_id: int,
    data: RegenerateRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Recompute entries from the stored dates and amount."""
    schedule = await _load_accessible(db, schedule_id, principal)
    try:
        return await schedule_service.regenerate_schedule(
            db, schedule, policy=data.allocation_policy, principal=principal
        )
    except ScheduleValidationError as e:
        raise _validation_error(e)


# ===================================================================
# Export & audit
# ===================================================================

@router.get("/{schedule_id}/download")
@limiter.limit(settings.export_rate_limit)
async def download_schedule(
    schedule_id: int,
    request: Request,
    format: ExportFormat = Query("csv"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Export the schedule and record the download."""
    schedule = await _load_accessible(db, schedule_id, principal)
    meta = export_service.ScheduleMeta.from_schedule(schedule)
    try:
        content = export_service.export_schedule(
            schedule_service.schedule_entries(schedule), meta, format
        )
    except export_service.ExportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await audit_service.record_audit_entry(
        db,
        schedule_id=schedule.id,
        entity_id=schedule.entity_id,
        action_type=AuditActionType.DOWNLOADED,
        details=f"Schedule exported as {format.upper()} for {schedule.vendor}",
        principal=principal,
    )

    filename = export_service.schedule_filename(schedule.vendor, schedule.invoice_date, format)
    return Response(
        content=content,
        media_type=export_service.get_content_type(format),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{schedule_id}/audit", response_model=list[ScheduleAuditResponse])
async def get_schedule_audit(
    schedule_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    schedule = await _load_accessible(db, schedule_id, principal)
    return await audit_service.list_audit_entries(db, schedule.id)
