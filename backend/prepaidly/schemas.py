"""Pydantic schemas for request/response validation."""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Literal
from pydantic import BaseModel, Field, model_validator

from prepaidly.models.schedule import AuditActionType, ScheduleType
from prepaidly.services.amortization.schedule_generator import AllocationPolicy


# ── Schedule generation ──────────────────────────────

class ScheduleEntryResponse(BaseModel):
    period: date
    amount: Decimal
    cumulative: Decimal
    remaining: Decimal

    model_config = {"from_attributes": True}


class SchedulePreviewRequest(BaseModel):
    service_start: date
    service_end: date
    total_amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    allocation_policy: Optional[AllocationPolicy] = None


class SchedulePreviewResponse(BaseModel):
    allocation_policy: AllocationPolicy
    period_count: int
    first_period: date
    last_period: date
    total: Decimal
    entries: list[ScheduleEntryResponse]


# ── Schedule register ────────────────────────────────

class _ScheduleFields(BaseModel):
    @model_validator(mode="before")
    @classmethod
    def empty_strings_to_none(cls, values):  # type: ignore[override]
        """Convert empty strings to None and strip text fields."""
        if isinstance(values, dict):
            cleaned = {}
            for k, v in values.items():
                if isinstance(v, str):
                    v = v.strip()
                cleaned[k] = None if v == "" else v
            return cleaned
        return values


class ScheduleCreateRequest(_ScheduleFields):
    entity_id: str = Field(min_length=1, max_length=64)
    schedule_type: ScheduleType
    vendor: str = Field(min_length=1, max_length=255)
    invoice_date: date
    total_amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    service_start: date
    service_end: date
    reference_number: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    allocation_policy: Optional[AllocationPolicy] = None


class ScheduleUpdateRequest(_ScheduleFields):
    """Fields left out keep their stored value."""
    schedule_type: Optional[ScheduleType] = None
    vendor: Optional[str] = Field(None, min_length=1, max_length=255)
    invoice_date: Optional[date] = None
    total_amount: Optional[Decimal] = Field(None, gt=0, max_digits=14, decimal_places=2)
    service_start: Optional[date] = None
    service_end: Optional[date] = None
    reference_number: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    allocation_policy: Optional[AllocationPolicy] = None

    def changes(self) -> dict:
        """Explicitly sent fields; ``description`` may be cleared with null."""
        sent = self.model_dump(exclude_unset=True)
        return {k: v for k, v in sent.items() if v is not None or k == "description"}


class RegenerateRequest(BaseModel):
    allocation_policy: Optional[AllocationPolicy] = None


class ScheduleSummaryResponse(BaseModel):
    id: int
    entity_id: str
    schedule_type: ScheduleType
    vendor: str
    invoice_date: date
    total_amount: Decimal
    service_start: date
    service_end: date
    reference_number: str
    description: Optional[str] = None
    allocation_policy: AllocationPolicy
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ScheduleDetailResponse(ScheduleSummaryResponse):
    entries: list[ScheduleEntryResponse] = []


# ── Audit trail ──────────────────────────────────────

class ScheduleAuditResponse(BaseModel):
    id: int
    schedule_id: int
    action: str
    action_type: AuditActionType
    details: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


ExportFormat = Literal["csv", "json"]
